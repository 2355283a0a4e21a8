from __future__ import annotations

import logging
import mimetypes
import os
import posixpath
import shutil
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .errors import (
    AlreadyExists,
    DirectoryNotEmpty,
    InvalidPath,
    NotADirectory,
    NotFound,
)
from .naming import sanitize_name
from .security import (
    is_inside_root,
    is_safe_basename,
    normalize_relative_path,
    parent_of,
    resolve_path,
    to_relative,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirEntry:
    name: str
    path: str
    is_directory: bool
    size: int | None
    created: str
    modified: str
    mime_type: str | None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "isDirectory": self.is_directory,
            "size": self.size,
            "created": self.created,
            "modified": self.modified,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class DirectoryListing:
    current_path: str
    parent_path: str | None
    files: list[DirEntry] = field(default_factory=list)
    total_items: int = 0
    total_size: int = 0

    def to_dict(self) -> dict:
        return {
            "files": [e.to_dict() for e in self.files],
            "currentPath": self.current_path,
            "parentPath": self.parent_path,
            "totalItems": self.total_items,
            "totalSize": self.total_size,
        }


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _created_ts(st: os.stat_result) -> float:
    # st_birthtime exists on macOS/BSD (and Windows on 3.12+); ctime elsewhere.
    return getattr(st, "st_birthtime", st.st_ctime)


def guess_mime_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def _entry_from_stat(name: str, rel: str, st: os.stat_result) -> DirEntry:
    is_dir = stat.S_ISDIR(st.st_mode)
    return DirEntry(
        name=name,
        path=rel,
        is_directory=is_dir,
        size=None if is_dir else int(st.st_size),
        created=_iso(_created_ts(st)),
        modified=_iso(st.st_mtime),
        mime_type=None if is_dir else guess_mime_type(name),
    )


def _sort_key(entry: DirEntry) -> tuple[bool, str]:
    # Folders first, then case-insensitive by name.
    return (not entry.is_directory, entry.name.casefold())


def list_directory(root: Path, relative_path: str | None) -> DirectoryListing:
    """List immediate children of a directory.

    A missing directory yields an empty listing rather than an error, so the
    client can still render breadcrumbs for a path that was just removed.
    """
    current = normalize_relative_path(relative_path)
    target = resolve_path(root, current)
    parent = parent_of(current)

    if not target.exists():
        return DirectoryListing(current_path=current, parent_path=parent)
    if not target.is_dir():
        raise NotADirectory()

    entries: list[DirEntry] = []
    with os.scandir(target) as it:
        for child in it:
            rel = f"{current}/{child.name}" if current else child.name
            if child.is_symlink() and not is_inside_root(root, Path(child.path)):
                log.warning("Skipping %s in listing: link points outside the storage root", rel)
                continue
            try:
                st = child.stat()
            except OSError as e:
                # Broken symlink, permission problem or entry vanished mid-listing.
                log.warning("Skipping %s in listing: %s", rel, e)
                continue
            entries.append(_entry_from_stat(child.name, rel, st))

    entries.sort(key=_sort_key)
    return DirectoryListing(
        current_path=current,
        parent_path=parent,
        files=entries,
        total_items=len(entries),
        total_size=sum(e.size or 0 for e in entries),
    )


def create_folder(root: Path, relative_path: str | None, name: str) -> str:
    """Create ``relative_path/name``. Duplicates are an error, not auto-renamed."""
    folder_name = sanitize_name(name)
    parent = resolve_path(root, relative_path)
    if parent.exists() and not parent.is_dir():
        raise NotADirectory()

    target = parent / folder_name
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError):
        # A file sits somewhere along relative_path.
        raise NotADirectory()
    try:
        target.mkdir()
    except FileExistsError:
        raise AlreadyExists("Folder already exists")
    log.info("Created folder %s", to_relative(root, target))
    return to_relative(root, target)


def _resolve_existing_child(root: Path, relative_path: str | None) -> Path:
    # Only the parent is canonicalized: the entry itself may be a symlink, and
    # rename/move/delete must act on the link rather than on what it points to.
    rel = normalize_relative_path(relative_path)
    if not rel:
        raise InvalidPath("The storage root cannot be modified")
    parent_rel, name = posixpath.split(rel)
    if not is_safe_basename(name):
        raise InvalidPath()
    target = resolve_path(root, parent_rel) / name
    if not os.path.lexists(target):
        raise NotFound()
    return target


def rename_entry(root: Path, old_path: str | None, new_name: str) -> str:
    """Rename a file or folder in place and return its new relative path."""
    name = sanitize_name(new_name)
    source = _resolve_existing_child(root, old_path)
    target = source.parent / name
    if target == source:
        return to_relative(root, target)
    if os.path.lexists(target):
        raise AlreadyExists()
    os.rename(source, target)
    log.info("Renamed %s -> %s", to_relative(root, source), to_relative(root, target))
    return to_relative(root, target)


def move_entry(root: Path, source_path: str | None, target_dir: str | None) -> str:
    """Move an entry into another folder, keeping its name."""
    source = _resolve_existing_child(root, source_path)
    destination_dir = resolve_path(root, target_dir)
    if not destination_dir.exists():
        raise NotFound("Target folder not found")
    if not destination_dir.is_dir():
        raise NotADirectory()
    if destination_dir == source or source in destination_dir.parents:
        raise InvalidPath("Cannot move a folder into itself")

    target = destination_dir / source.name
    if target == source:
        return to_relative(root, target)
    if os.path.lexists(target):
        raise AlreadyExists()
    os.rename(source, target)
    log.info("Moved %s -> %s", to_relative(root, source), to_relative(root, target))
    return to_relative(root, target)


def delete_entry(root: Path, relative_path: str | None, force: bool = False) -> str:
    """Delete a file or folder.

    Non-empty folders are refused unless ``force`` is set. Symlinks are
    unlinked, never followed.
    """
    target = _resolve_existing_child(root, relative_path)
    rel = to_relative(root, target)

    if target.is_symlink() or not target.is_dir():
        target.unlink()
    else:
        if not force and any(target.iterdir()):
            raise DirectoryNotEmpty()
        shutil.rmtree(target)
    log.info("Deleted %s%s", rel, " (force)" if force else "")
    return rel


def file_info(root: Path, relative_path: str | None) -> dict:
    target = resolve_path(root, relative_path)
    if not target.exists():
        raise NotFound()

    st = target.stat()
    is_dir = stat.S_ISDIR(st.st_mode)
    info = {
        "name": target.name,
        "path": to_relative(root, target),
        "isDirectory": is_dir,
        "size": None if is_dir else int(st.st_size),
        "created": _iso(_created_ts(st)),
        "modified": _iso(st.st_mtime),
        "accessed": _iso(st.st_atime),
        "permissions": oct(stat.S_IMODE(st.st_mode)),
        "mimeType": None if is_dir else guess_mime_type(target.name),
    }
    if is_dir:
        has_files = has_folders = False
        with os.scandir(target) as it:
            for child in it:
                try:
                    if child.is_dir():
                        has_folders = True
                    else:
                        has_files = True
                except OSError:
                    continue
                if has_files and has_folders:
                    break
        info["hasFiles"] = has_files
        info["hasFolders"] = has_folders
    return info
