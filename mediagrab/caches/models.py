"""Data models for the favicon and block list caches."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator


class FaviconEntry(BaseModel):
    """A favicon written to the local store. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    key: str
    file_path: Path


class BlockListSnapshot(BaseModel):
    """Point-in-time value of the ad-block host list, replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    hosts: frozenset[str]
    source_timestamp: float
    generation: int = 0
    is_default: bool = False

    @field_validator("hosts")
    @classmethod
    def hosts_not_empty(cls, hosts: frozenset[str]) -> frozenset[str]:
        """Reject empty snapshots, the active host list is never empty."""
        if not hosts:
            raise ValueError("a block list snapshot needs at least one host")
        return hosts
