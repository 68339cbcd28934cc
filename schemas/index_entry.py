"""
Pydantic schemas for index entries with validation
"""

from pydantic import BaseModel, Field, field_validator
import re

_HEX_RE = re.compile(r"^[0-9a-f]+$")


class PackageVersionCreate(BaseModel):
    """
    One line of an index file, validated.

    Index lines use the registry's short keys (``vers``, ``cksum``); the
    long names are accepted too. Keys this catalog does not store
    (``deps``, ``features``, ``links``, ``v``...) are ignored.
    """

    name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(..., min_length=1, max_length=255, alias="vers")
    checksum: str = Field(..., min_length=1, max_length=128, alias="cksum")
    size: int = Field(0, ge=0)
    yanked: bool = False

    @field_validator("name", "version")
    @classmethod
    def strip_identifiers(cls, v):
        """Identifiers cannot be blank"""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("checksum")
    @classmethod
    def normalize_checksum(cls, v):
        """Checksums are lowercase hex"""
        v = v.strip().lower()
        if not _HEX_RE.match(v):
            raise ValueError("checksum must be a hex string")
        return v

    @property
    def key(self):
        return (self.name, self.version)

    class Config:
        populate_by_name = True
        extra = "ignore"
        frozen = True
