# util/timing.py
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator
import logging


@contextmanager
def timed(logger: logging.Logger, name: str, **kv: Any) -> Iterator[Dict[str, Any]]:
    """
    Usage:
      with timed(logger, "upload.transfer", job=job.id) as fields:
          ...
          fields["outcome"] = "completed"
    Emits one INFO on exit: "<name>.done ms=<int> key=val ..." including any
    fields the block added (an exception sets outcome=<ExceptionName> unless given).
    """
    fields: Dict[str, Any] = dict(kv)
    t0 = time.perf_counter()
    try:
        yield fields
    except BaseException as exc:
        fields.setdefault("outcome", type(exc).__name__)
        raise
    finally:
        dt_ms = int((time.perf_counter() - t0) * 1000)
        suffix = "".join(f" {k}={v}" for k, v in fields.items())
        logger.info("%s.done ms=%d%s", name, dt_ms, suffix)
