from __future__ import annotations

import posixpath
import re
from pathlib import Path

from .errors import InvalidPath


_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def normalize_relative_path(relative_path: str | None) -> str:
    """Normalize a client path to a clean ``a/b/c`` form ("" for the root).

    Pure string work: nothing here touches the filesystem, so traversal
    attempts are rejected before any stat/readlink happens.
    """
    if relative_path is None:
        return ""
    if not isinstance(relative_path, str):
        raise InvalidPath()
    if "\x00" in relative_path:
        raise InvalidPath()

    raw = relative_path.strip().replace("\\", "/")
    if not raw or raw == ".":
        return ""
    if raw.startswith("/") or _DRIVE_RE.match(raw):
        raise InvalidPath("Absolute paths are not allowed")

    normalized = posixpath.normpath(raw)
    if normalized == ".":
        return ""
    if normalized.split("/", 1)[0] == "..":
        raise InvalidPath("Path traversal attempt")
    return normalized


def resolve_path(root: Path, relative_path: str | None) -> Path:
    """Turn a client-supplied relative path into an absolute path inside root.

    The joined path is canonicalized (symlinks resolved) before the
    containment check, so a link inside the root that points elsewhere is
    rejected the same way as ``../`` segments.
    """
    normalized = normalize_relative_path(relative_path)
    root = root.resolve()
    if not normalized:
        return root
    resolved = (root / normalized).resolve()
    if resolved == root:
        return resolved
    if root not in resolved.parents:
        raise InvalidPath("Path traversal attempt")
    return resolved


def to_relative(root: Path, path: Path) -> str:
    """Client-facing form of an absolute path under root ("" for the root)."""
    rel = path.relative_to(root.resolve()).as_posix()
    return "" if rel == "." else rel


def parent_of(relative_path: str) -> str | None:
    """Parent of a normalized relative path; None for the root."""
    if not relative_path:
        return None
    return posixpath.dirname(relative_path)



def is_inside_root(root: Path, path: Path) -> bool:
    """True when path, with symlinks resolved, is the root or lies below it."""
    root = root.resolve()
    real = path.resolve()
    return real == root or root in real.parents


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True
