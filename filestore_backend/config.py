from __future__ import annotations

import os
from pathlib import Path


def _env(name: str, default: str) -> str:
    # FILESTORE_-prefixed names win over the bare legacy names.
    for key in (f"FILESTORE_{name}", name):
        raw = os.environ.get(key)
        if raw is not None and raw.strip():
            return raw.strip()
    return default


# Root directory for all stored files.
# Default: project-local ./uploads. Override with FILESTORE_UPLOAD_DIR (or UPLOAD_DIR).
_root_raw = _env("UPLOAD_DIR", "")
if _root_raw:
    UPLOAD_DIR = Path(_root_raw)
else:
    # filestore_backend/ -> project root
    UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
UPLOAD_DIR = UPLOAD_DIR.resolve()
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# Upload limits.
MAX_FILE_BYTES = int(_env("MAX_FILE_BYTES", str(100 * 1024 * 1024)))  # 100MB
MAX_FILES_PER_REQUEST = int(_env("MAX_FILES_PER_REQUEST", "100"))

# Comma separated MIME allow-list, e.g. "image/*,application/pdf". Empty allows everything.
ALLOWED_MIME_TYPES = frozenset(
    t.strip().lower() for t in _env("ALLOWED_MIME_TYPES", "").split(",") if t.strip()
)

# Read size used when copying file bodies (uploads and zip streaming).
ZIP_CHUNK_SIZE = int(_env("ZIP_CHUNK_SIZE", str(1024 * 1024)))

LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()
