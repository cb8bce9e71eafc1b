# repository/namespaces.py
from typing import Final

# Every key this service writes to Redis lives under this prefix, e.g. `uploadq:queue`.
ROOT: Final[str] = "uploadq"
