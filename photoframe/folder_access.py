"""Folder allowlist matching and path containment checks.

Paths handled here are POSIX-style and relative to the uploads root, with
``""`` standing for the root itself. Matching is done on whole path segments,
so ``"fam"`` never matches ``"family"``.
"""

from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Sequence


def normalize_folder(value: Optional[str]) -> str:
    if not value:
        return ""
    parts: List[str] = []
    for part in value.replace("\\", "/").split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


def _is_within(candidate: str, folder: str) -> bool:
    """True when *candidate* equals *folder* or lies beneath it."""

    if not folder:
        return True
    return candidate == folder or candidate.startswith(folder + "/")


def is_folder_permitted(path: str, assigned_folders: Optional[Sequence[str]]) -> bool:
    """Exact, ancestor or descendant match against any assigned folder."""

    if not assigned_folders:
        return True
    candidate = normalize_folder(path)
    for assigned in assigned_folders:
        folder = normalize_folder(assigned)
        if _is_within(candidate, folder):
            return True
        # Ancestors stay visible so the requester can navigate down.
        if _is_within(folder, candidate):
            return True
    return False


def is_file_permitted(path: str, assigned_folders: Optional[Sequence[str]]) -> bool:
    """A file is visible when its folder equals or lies beneath an assigned folder."""

    if not assigned_folders:
        return True
    parent = PurePosixPath(normalize_folder(path)).parent.as_posix()
    containing = "" if parent == "." else parent
    return any(_is_within(containing, normalize_folder(assigned)) for assigned in assigned_folders)


def is_write_permitted(folder: str, assigned_folders: Optional[Sequence[str]]) -> bool:
    """Writes require the folder itself to be assigned or inside an assigned folder."""

    if not assigned_folders:
        return True
    candidate = normalize_folder(folder)
    return any(_is_within(candidate, normalize_folder(assigned)) for assigned in assigned_folders)


def filter_listing(
    entries: Iterable[Dict[str, Any]], assigned_folders: Optional[Sequence[str]]
) -> List[Dict[str, Any]]:
    """Keep only the listing entries the requester may see.

    Entries are mappings with a ``path`` and a ``type`` of ``"folder"`` or a
    file type; every entry is judged on its own.
    """

    permitted: List[Dict[str, Any]] = []
    for entry in entries:
        path = entry.get("path", "")
        if entry.get("type") == "folder":
            allowed = is_folder_permitted(path, assigned_folders)
        else:
            allowed = is_file_permitted(path, assigned_folders)
        if allowed:
            permitted.append(entry)
    return permitted


def resolve_safe_path(root: Path, relative: Optional[str]) -> Optional[Path]:
    """Resolve *relative* under *root*, or return None if it would escape it."""

    if relative is None or not isinstance(relative, str):
        return None
    if "\0" in relative:
        return None
    cleaned = relative.replace("\\", "/")
    if cleaned.startswith("/"):
        return None
    base = Path(root).resolve()
    candidate = (base / cleaned).resolve()
    if candidate != base and base not in candidate.parents:
        return None
    return candidate
