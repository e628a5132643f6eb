from typing import Optional

from pydantic import BaseModel


class MediaDownload(BaseModel):
    """Raw bytes fetched from a provider-hosted media URL."""
    content: bytes
    size: int
    content_type: Optional[str] = None


class PrescriptionUpload(BaseModel):
    """A stored prescription image. `path` is the reference attached to order lines."""
    path: str
    file_name: str
    size: int
    content_type: Optional[str] = None
