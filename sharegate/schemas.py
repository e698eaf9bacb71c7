"""
Pydantic schemas for resource records and API payloads.
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------------
# Persisted resource records
# ----------------------------------------------------------------------

class ResourceBase(BaseModel):
    """Fields common to every token-bound resource."""
    token: str
    created: datetime = Field(default_factory=utcnow)
    expires: Optional[datetime] = None

    @field_validator("created", "expires")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Timestamps without a zone (e.g. a hand-edited manifest) are UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires is None:
            return False
        return (now or utcnow()) >= self.expires


class Share(ResourceBase):
    """Read-only grant to a fixed set of files under the files root."""
    kind: Literal["share"] = "share"
    files: List[str]
    label: Optional[str] = None


class Upload(ResourceBase):
    """Write-only grant to one dedicated destination directory."""
    kind: Literal["upload"] = "upload"
    name: str
    directory: str  # relative to the uploads root
    max_file_size: Optional[int] = None
    quota: Optional[int] = None


Resource = Annotated[Union[Share, Upload], Field(discriminator="kind")]
resource_adapter: TypeAdapter = TypeAdapter(Resource)


# ----------------------------------------------------------------------
# Admin API
# ----------------------------------------------------------------------

class CreateShareRequest(BaseModel):
    files: List[str] = Field(..., min_length=1)
    label: Optional[str] = None
    expires_in_hours: Optional[float] = Field(None, gt=0)


class CreateUploadRequest(BaseModel):
    name: str
    max_file_size: Optional[int] = Field(None, gt=0)
    quota: Optional[int] = Field(None, gt=0)
    expires_in_hours: Optional[float] = Field(None, gt=0)


class ResourceCreated(BaseModel):
    """Returned to the operator after minting a token."""
    kind: str
    token: str
    url: str
    expires: Optional[datetime] = None


class FileEntry(BaseModel):
    name: str
    size: int


class ReceivedFiles(BaseModel):
    token: str
    name: str
    files: List[FileEntry]
    used_bytes: int


# ----------------------------------------------------------------------
# User API
# ----------------------------------------------------------------------

class ShareListing(BaseModel):
    """What a share recipient sees."""
    label: Optional[str] = None
    files: List[FileEntry]
    expires: Optional[datetime] = None


class UploadInfo(BaseModel):
    """Limits an uploader can see before sending anything."""
    name: str
    max_file_size: Optional[int] = None
    remaining_bytes: Optional[int] = None
    expires: Optional[datetime] = None


class UploadResult(BaseModel):
    uploaded: List[str]
