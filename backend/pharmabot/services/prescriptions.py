"""
Prescription image storage.

Files land under <media_root>/prescriptions/<phone>/ and the path relative
to media_root is what gets attached to order lines.
"""
import asyncio
import logging
import re
import time
from pathlib import Path

from pharmabot.schemas.media import MediaDownload, PrescriptionUpload

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
    "application/pdf": "pdf",
}
DEFAULT_EXTENSION = "jpg"

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def extension_for(content_type) -> str:
    if not content_type:
        return DEFAULT_EXTENSION
    return EXTENSIONS.get(content_type.split(";")[0].strip().lower(), DEFAULT_EXTENSION)


class PrescriptionStore:
    def __init__(self, media_root: Path):
        self.media_root = Path(media_root)

    async def save(self, phone_number: str, media_id: str, media: MediaDownload) -> PrescriptionUpload:
        file_name = (
            f"prescription_{int(time.time() * 1000)}_{_UNSAFE.sub('', media_id)}"
            f".{extension_for(media.content_type)}"
        )
        relative = Path("prescriptions") / _UNSAFE.sub("", phone_number) / file_name
        target = self.media_root / relative

        await asyncio.to_thread(self._write, target, media.content)
        logger.info(f"[Prescription] Stored {relative} ({media.size} bytes) for {phone_number}")

        return PrescriptionUpload(
            path=relative.as_posix(),
            file_name=file_name,
            size=media.size,
            content_type=media.content_type,
        )

    @staticmethod
    def _write(target: Path, content: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
