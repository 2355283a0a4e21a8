from __future__ import annotations

import itertools
import os
import re
from pathlib import Path
from typing import BinaryIO

from .errors import InvalidName
from .security import is_safe_basename


# Characters Windows/Linux refuse (or that would split a path), plus control chars.
_DISALLOWED_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(name: str) -> str:
    """Make a single path component safe to create on disk.

    Disallowed characters become ``_``; surrounding whitespace is trimmed.
    """
    if not isinstance(name, str):
        raise InvalidName()
    cleaned = _DISALLOWED_RE.sub("_", name).strip()
    stem, _ext = split_name(cleaned)
    # "." is caught by is_safe_basename ("." has an empty Path.name); ".." is not.
    if not stem.strip() or cleaned == ".." or not is_safe_basename(cleaned):
        raise InvalidName("Name is empty or invalid")
    return cleaned


def split_name(name: str) -> tuple[str, str]:
    # ".bashrc" has no extension; "a.tar.gz" -> ("a.tar", ".gz")
    return os.path.splitext(name)


def candidate_names(name: str):
    """Yield ``name``, ``stem (1).ext``, ``stem (2).ext``, ..."""
    stem, ext = split_name(name)
    yield name
    for counter in itertools.count(1):
        yield f"{stem} ({counter}){ext}"


def allocate_name(directory: Path, desired: str) -> str:
    """Return a sanitized name that does not exist yet in directory.

    Check-then-create is not atomic; callers that create the entry should go
    through create_unique_file / create_unique_dir which retry on collision.
    """
    name = sanitize_name(desired)
    return next(c for c in candidate_names(name) if not os.path.lexists(directory / c))


def create_unique_file(directory: Path, desired: str) -> tuple[Path, BinaryIO]:
    """Allocate a free name and open it for exclusive writing.

    Returns the final path and the open binary handle (caller closes it).
    """
    while True:
        path = directory / allocate_name(directory, desired)
        try:
            return path, open(path, "xb")
        except FileExistsError:
            # Lost a race with a concurrent writer; pick the next free name.
            continue


def create_unique_dir(directory: Path, desired: str) -> Path:
    while True:
        path = directory / allocate_name(directory, desired)
        try:
            path.mkdir()
            return path
        except FileExistsError:
            continue
