# backend/uploads.py

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import UploadFile

from config.settings import Settings
from .errors import UploadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_EXTENSION = ".png"


def extension_for(filename: Optional[str]) -> str:
    """
    Extension of the original upload name, lowercased.
    Falls back to .png when the name has none.
    """
    suffix = Path(filename or "").suffix.lower()
    if not suffix or suffix == ".":
        return DEFAULT_EXTENSION
    return suffix


def validate_upload(upload: Optional[UploadFile]) -> UploadFile:
    if upload is None or not upload.filename:
        raise UploadError("no file in request", public_message="No image provided")
    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise UploadError(
            f"rejected content type {content_type!r}",
            public_message="Only image files are supported",
        )
    return upload


def remove_temp_file(path: Path) -> None:
    """Best effort; a failed unlink is logged, never raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove temp upload %s: %s", path, e)


async def _write_upload(upload: UploadFile, path: Path, max_bytes: int) -> int:
    written = 0
    with path.open("wb") as f:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                raise UploadError(
                    f"upload exceeded {max_bytes} bytes",
                    public_message=f"Image is too large (max {max_bytes // (1024 * 1024)}MB)",
                )
            f.write(chunk)
    if written == 0:
        raise UploadError("empty upload", public_message="No image provided")
    return written


@asynccontextmanager
async def temp_upload(
    upload: Optional[UploadFile],
    settings: Settings,
    keep_extension: bool = False,
) -> AsyncIterator[Path]:
    """
    Persist one uploaded image under settings.temp_dir for the duration of a request.

    - rejects missing files and non-image content types before anything is written
    - enforces settings.max_upload_bytes while streaming
    - when keep_extension is set, renames the file to carry the original extension
    - the file is deleted when the block exits, whatever happens inside it
    """
    upload = validate_upload(upload)

    temp_dir = Path(settings.temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    path = temp_dir / uuid.uuid4().hex

    try:
        size = await _write_upload(upload, path, settings.max_upload_bytes)
        if keep_extension:
            path = path.rename(path.with_suffix(extension_for(upload.filename)))
        logger.debug("Stored upload %r (%d bytes) at %s", upload.filename, size, path)
        yield path
    finally:
        remove_temp_file(path)
