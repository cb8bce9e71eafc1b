# model/transfer.py
from typing import Optional
from pydantic import BaseModel, ConfigDict


class RemoteFileDescriptor(BaseModel):
    """What the file server returned for a finished upload; unknown fields are kept."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    name: Optional[str] = None
    size: Optional[int] = None
    parent_id: Optional[str] = None
