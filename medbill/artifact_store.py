from __future__ import annotations

import logging
import os
import re
import secrets
from datetime import datetime, timezone
from typing import Optional, Tuple

from medbill.errors import PayloadTooLarge, StorageError, ValidationError

logger = logging.getLogger("medbill.artifact_store")

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,200}$")

# -------------------------
# Upload validation knobs
# -------------------------
ALLOWED_UPLOAD_MIMES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "text/plain",
}

_PDF_MAGIC = b"%PDF-"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_MAGIC_PREFIX = b"\xff\xd8\xff"
_GIF_MAGICS = (b"GIF87a", b"GIF89a")


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")


def new_artifact_id(prefix: str) -> str:
    """
    Collision-resistant name stem: prefix + UTC timestamp + random suffix.
    """
    return f"{prefix}-{_utc_stamp()}-{secrets.token_hex(4)}"


def sanitize_filename(filename: str) -> str:
    """
    Strip directories and anything outside [A-Za-z0-9._-]. Keeps the extension.
    """
    fn = os.path.basename((filename or "").replace("\\", "/")).replace("\x00", "")
    fn = re.sub(r"[^A-Za-z0-9._-]+", "_", fn).strip("._")
    if not fn:
        fn = "upload"
    if len(fn) > 120:
        root, ext = os.path.splitext(fn)
        fn = root[:100] + ext[:20]
    return fn


def normalize_mime(mime: str) -> str:
    m = (mime or "").split(";", 1)[0].strip().lower()
    return "image/jpeg" if m == "image/jpg" else m


def _signature_matches(mime: str, data: bytes) -> bool:
    if mime == "application/pdf":
        return data.startswith(_PDF_MAGIC)
    if mime == "image/png":
        return data.startswith(_PNG_MAGIC)
    if mime == "image/jpeg":
        return data.startswith(_JPEG_MAGIC_PREFIX)
    if mime == "image/gif":
        return data.startswith(_GIF_MAGICS)
    if mime == "text/plain":
        try:
            data.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return True
    return False


def validate_upload(filename: str, declared_mime: str, data: bytes, max_bytes: int) -> Tuple[str, str]:
    """
    Returns (sanitized_filename, normalized_mime).
    Checks the declared type against the allow-list, the size cap, and the
    file signature.
    """
    if not data:
        raise ValidationError("Empty file")
    if len(data) > max_bytes:
        raise PayloadTooLarge(f"File too large (max {max_bytes} bytes)")
    declared = (declared_mime or "").split(";", 1)[0].strip().lower()
    if declared not in ALLOWED_UPLOAD_MIMES:
        raise ValidationError(
            f"Invalid file type: {declared or 'unknown'}. Only PDF, images, and text files are allowed."
        )
    mime = normalize_mime(declared)
    if not _signature_matches(mime, data):
        raise ValidationError(f"File content does not match declared type {mime}")
    return sanitize_filename(filename), mime


class ArtifactStore:
    """
    One directory of write-once files (bills or uploads).
    Files are created exclusively and never rewritten.
    """

    def __init__(self, base_dir: str) -> None:
        self.base_dir = os.path.abspath(base_dir)

    def ensure_dir(self) -> None:
        try:
            os.makedirs(self.base_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create artifact directory {self.base_dir}: {e}") from e

    def is_writable(self) -> bool:
        try:
            self.ensure_dir()
        except StorageError:
            return False
        return os.access(self.base_dir, os.W_OK)

    def write_once(self, filename: str, content: bytes) -> str:
        if not _SAFE_NAME.match(filename or ""):
            raise StorageError(f"Refusing unsafe artifact name: {filename!r}")
        self.ensure_dir()
        path = os.path.join(self.base_dir, filename)
        try:
            with open(path, "xb") as f:
                f.write(content)
        except FileExistsError as e:
            raise StorageError(f"Artifact already exists: {filename}") from e
        except OSError as e:
            raise StorageError(f"Artifact write failed for {filename}: {e}") from e
        logger.info("artifact.write dir=%s file=%s bytes=%s", self.base_dir, filename, len(content))
        return path

    def save_upload(self, original_name: str, content: bytes) -> Tuple[str, str]:
        """Returns (stored_filename, path)."""
        stored = f"{new_artifact_id('upload')}-{sanitize_filename(original_name)}"
        return stored, self.write_once(stored, content)

    def resolve(self, filename: str) -> Optional[str]:
        """
        Absolute path for a stored file, or None if the name is unsafe or absent.
        """
        name = (filename or "").strip()
        if not _SAFE_NAME.match(name) or ".." in name:
            return None
        path = os.path.abspath(os.path.join(self.base_dir, name))
        if not path.startswith(self.base_dir + os.sep):
            return None
        if not os.path.isfile(path):
            return None
        return path
