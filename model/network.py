# model/network.py
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ConnectionKind(str, Enum):
    wifi = "wifi"
    cellular = "cellular"
    ethernet = "ethernet"
    other = "other"
    none = "none"
    unknown = "unknown"


class NetworkStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_connected: bool
    # None means reachability has not been determined yet
    is_internet_reachable: Optional[bool] = None
    kind: ConnectionKind = ConnectionKind.unknown

    @classmethod
    def online(cls, kind: ConnectionKind = ConnectionKind.unknown) -> "NetworkStatus":
        return cls(is_connected=True, is_internet_reachable=True, kind=kind)

    @classmethod
    def offline(cls) -> "NetworkStatus":
        return cls(is_connected=False, is_internet_reachable=False, kind=ConnectionKind.none)
