"""
Pydantic models for paste metadata and API responses.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ContentInfo(BaseModel):
    """Result of sniffing a content buffer."""
    mime: str = Field("text/plain", description="Detected MIME type")
    extension: str = Field("", description="File extension including the dot, or empty")
    width: Optional[int] = Field(None, description="Pixel width for images")
    height: Optional[int] = Field(None, description="Pixel height for images")


class UploaderInfo(BaseModel):
    """Who uploaded a paste. Written once at creation."""
    model_config = ConfigDict(extra="ignore")

    ip: Optional[str] = Field(None, description="Client network address")
    ua: Optional[str] = Field(None, description="Client User-Agent")
    country: Optional[str] = Field(None, description="Geo hint from the edge, if any")


class Counters(BaseModel):
    """Informational counters, updated on every successful read."""
    model_config = ConfigDict(extra="ignore")

    views: int = Field(0, ge=0, description="Number of successful reads")


class SystemInfo(BaseModel):
    """Content type and capability data. Written once at creation."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    mime: str = Field("text/plain", description="MIME type the content is served with")
    extension: str = Field("", description="Detected file extension")
    delete_token: Optional[str] = Field(None, alias="deleteToken", description="Secret required for DELETE")
    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)

    @property
    def dimensions(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None


class PasteRecord(BaseModel):
    """A paste as read back from the store."""
    id: str
    content: bytes
    uploader: UploaderInfo
    counters: Counters
    system: SystemInfo
    created_at: int
    expires_at: int
    last_access_at: Optional[int] = None


class HealthCheck(BaseModel):
    """Schema for health check response."""
    ok: bool = Field(..., description="Is the application healthy?")
