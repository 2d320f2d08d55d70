"""Filesystem glue for the photo tree: listings and image uploads."""

import logging
import mimetypes
import secrets
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
ALLOWED_MIMETYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
MAX_FILENAME_LENGTH = 255

logger = logging.getLogger("photoframe.files")


def is_image_name(name: str) -> bool:
    return Path(name).suffix.lower() in ALLOWED_EXTENSIONS


def validate_image_upload(filename: Optional[str], declared_type: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Accept only JPEG, PNG, GIF and WebP uploads with a consistent declared type."""

    if not filename:
        return False, "Filename cannot be empty"
    if len(filename) > MAX_FILENAME_LENGTH:
        return False, f"Filename exceeds maximum length of {MAX_FILENAME_LENGTH} characters"
    if "\x00" in filename:
        return False, "Filename contains invalid characters"
    if not is_image_name(filename):
        return False, "Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed."

    declared = (declared_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream" and declared not in ALLOWED_MIMETYPES:
        return False, "Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed."
    guessed, _ = mimetypes.guess_type(filename)
    if declared in ALLOWED_MIMETYPES and guessed and guessed != declared:
        # image/jpeg vs image/png style mismatches
        return False, "File extension does not match its content type"
    return True, None


def unique_image_name(original: str) -> str:
    safe = secure_filename(original) or "upload"
    stem, suffix = Path(safe).stem or "upload", Path(safe).suffix.lower()
    return f"{stem[:60]}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{suffix}"


def store_images(
    files: Iterable[FileStorage],
    target_dir: Path,
    relative_dir: str,
    limit: Optional[int] = None,
) -> Tuple[List[Dict[str, object]], List[Dict[str, str]]]:
    """Write accepted images into *target_dir*.

    At most *limit* files are stored when a limit is given; the rest are
    reported back as rejected.
    """

    saved: List[Dict[str, object]] = []
    rejected: List[Dict[str, str]] = []
    target_dir.mkdir(parents=True, exist_ok=True)

    for storage in files:
        original = storage.filename or ""
        try:
            if limit is not None and len(saved) >= limit:
                rejected.append({"filename": original, "reason": "Upload limit reached for this link"})
                continue
            ok, reason = validate_image_upload(original, storage.mimetype)
            if not ok:
                rejected.append({"filename": original, "reason": reason or "Invalid file"})
                continue
            stored_name = unique_image_name(original)
            destination = target_dir / stored_name
            storage.save(destination)
            relative_path = f"{relative_dir}/{stored_name}" if relative_dir else stored_name
            saved.append(
                {
                    "filename": stored_name,
                    "originalname": original,
                    "path": relative_path,
                    "size": destination.stat().st_size,
                }
            )
        finally:
            try:
                storage.close()
            except OSError as error:
                logger.warning("stream_close_failed filename=%s error=%s", original, error)

    return saved, rejected


def list_folder(root: Path, folder: Path) -> List[Dict[str, object]]:
    """Return folder and image entries directly inside *folder*, relative to *root*."""

    base = root.resolve()
    entries: List[Dict[str, object]] = []
    for item in sorted(folder.iterdir(), key=lambda entry: entry.name.lower()):
        if item.name.startswith("."):
            continue
        try:
            relative = item.resolve().relative_to(base).as_posix()
        except ValueError:
            # symlink pointing outside the photo tree
            continue
        if item.is_dir():
            entries.append(
                {
                    "name": item.name,
                    "type": "folder",
                    "path": relative,
                    "hasSubfolders": any(child.is_dir() for child in item.iterdir()),
                }
            )
        elif item.is_file() and is_image_name(item.name):
            entries.append(
                {
                    "name": item.name,
                    "type": "image",
                    "path": relative,
                    "url": f"/uploads/{relative}",
                }
            )
    return entries
