"""Pydantic models for peer discovery."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from localshare.config import UNKNOWN_ALIAS


class Identity(BaseModel):
    """This device's advertised name and listening port."""
    alias: str
    port: int = Field(ge=1, le=65535)


class Peer(BaseModel):
    """Represents a discovered device on the LAN."""
    ip: str
    port: int
    alias: str
    hostname: str


class PropertyKind(str, Enum):
    MISSING = "missing"
    PRESENT_EMPTY = "present_empty"
    PRESENT = "present"


class TxtProperty(BaseModel):
    """
    Result of looking up one key in a TXT record.

    Keeps "key absent" apart from "key present without a value" so the
    difference stays visible; both collapse to a default only in or_default().
    """
    model_config = ConfigDict(frozen=True)

    kind: PropertyKind
    value: str | None = None

    @classmethod
    def lookup(cls, properties: dict[bytes, bytes | None], key: str) -> "TxtProperty":
        raw_key = key.encode("utf-8")
        if raw_key not in properties:
            return cls(kind=PropertyKind.MISSING)
        raw = properties[raw_key]
        if not raw:
            return cls(kind=PropertyKind.PRESENT_EMPTY)
        return cls(kind=PropertyKind.PRESENT, value=raw.decode("utf-8", errors="replace"))

    def or_default(self, default: str = UNKNOWN_ALIAS) -> str:
        if self.kind is PropertyKind.PRESENT:
            return self.value
        return default


class ResolvedService(BaseModel):
    """A fully resolved mDNS service instance."""
    fullname: str
    addresses: list[str] = []
    port: int = 0
    properties: dict[bytes, bytes | None] = {}

    def txt_property(self, key: str) -> TxtProperty:
        return TxtProperty.lookup(self.properties, key)


# --- Events produced by a browse session ---

class ServiceFound(BaseModel):
    """A service was seen but could not (yet) be resolved."""
    fullname: str


class ServiceResolved(BaseModel):
    service: ResolvedService


class ServiceRemoved(BaseModel):
    fullname: str


DiscoveryEvent = ServiceFound | ServiceResolved | ServiceRemoved
