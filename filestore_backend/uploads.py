from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from .config import ALLOWED_MIME_TYPES, MAX_FILE_BYTES, MAX_FILES_PER_REQUEST, ZIP_CHUNK_SIZE
from .errors import (
    AlreadyExists,
    InvalidName,
    InvalidRequest,
    NotADirectory,
    PayloadTooLarge,
    TooManyFiles,
    UnsupportedType,
)
from .naming import create_unique_dir, create_unique_file, sanitize_name
from .security import resolve_path, to_relative
from .tree import guess_mime_type


log = logging.getLogger(__name__)


class FolderFile(BaseModel):
    name: str
    # base64, optionally as a data: URL
    content: str = ""


class FolderUpload(BaseModel):
    name: str
    files: list[FolderFile] = Field(default_factory=list)
    folders: list[FolderUpload] = Field(default_factory=list)


FolderUpload.model_rebuild()


@dataclass(frozen=True)
class SavedUpload:
    original_name: str
    name: str
    path: str
    size: int
    mime_type: str

    def to_dict(self) -> dict:
        return {
            "originalName": self.original_name,
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "mimetype": self.mime_type,
        }


@dataclass
class UploadBatch:
    files: list[SavedUpload] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


@dataclass
class MaterializeResult:
    name: str
    path: str
    files_written: int = 0
    folders_created: int = 0
    failed: list[dict] = field(default_factory=list)


def _target_directory(root: Path, current_path: str | None) -> Path:
    target = resolve_path(root, current_path)
    if target.exists() and not target.is_dir():
        raise NotADirectory()
    try:
        target.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError):
        raise NotADirectory()
    return target


def is_allowed_type(mime_type: str, allowed_types: Iterable[str]) -> bool:
    """Match a MIME type against an allow-list; ``image/*`` style wildcards work.

    An empty allow-list accepts everything.
    """
    allowed = {t.lower() for t in allowed_types}
    if not allowed:
        return True
    mime_type = (mime_type or "").split(";")[0].strip().lower()
    if mime_type in allowed:
        return True
    major = mime_type.split("/", 1)[0]
    return f"{major}/*" in allowed


def _upload_mime_type(upload: UploadFile) -> str:
    ct = (upload.content_type or "").split(";")[0].strip().lower()
    if ct and ct != "application/octet-stream":
        return ct
    return guess_mime_type(upload.filename or "")


def _save_one(
    root: Path, target: Path, upload: UploadFile, max_file_bytes: int, chunk_size: int
) -> SavedUpload:
    original = upload.filename or ""
    path, dest = create_unique_file(target, original)
    size = 0
    try:
        with dest:
            while True:
                chunk = upload.file.read(chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_file_bytes:
                    raise PayloadTooLarge(
                        f"File too large: {original} exceeds the {max_file_bytes} byte limit"
                    )
                dest.write(chunk)
    except Exception:
        path.unlink(missing_ok=True)
        raise
    return SavedUpload(
        original_name=original,
        name=path.name,
        path=to_relative(root, path),
        size=size,
        mime_type=_upload_mime_type(upload),
    )


def save_uploads(
    root: Path,
    current_path: str | None,
    uploads: Iterable[UploadFile],
    max_file_bytes: int = MAX_FILE_BYTES,
    max_files: int = MAX_FILES_PER_REQUEST,
    allowed_types: Iterable[str] = ALLOWED_MIME_TYPES,
    chunk_size: int = ZIP_CHUNK_SIZE,
) -> UploadBatch:
    """Store multipart uploads under current_path.

    Count and type limits are checked before anything touches the disk. A file
    over the size limit fails the whole request and removes what this request
    already wrote; any other per-file error is logged and reported in
    ``failed`` while the remaining files are still stored.
    """
    uploads = list(uploads)
    if not uploads:
        raise InvalidRequest("No files uploaded")
    if len(uploads) > max_files:
        raise TooManyFiles(f"Too many files: at most {max_files} per upload")
    for upload in uploads:
        if not is_allowed_type(_upload_mime_type(upload), allowed_types):
            raise UnsupportedType(f"File type not allowed: {upload.filename}")

    target = _target_directory(root, current_path)
    batch = UploadBatch()
    try:
        for upload in uploads:
            try:
                saved = _save_one(root, target, upload, max_file_bytes, chunk_size)
            except (OSError, InvalidName) as e:
                log.warning("Upload of %r failed: %s", upload.filename, e)
                batch.failed.append({"name": upload.filename or "", "message": str(e)})
                continue
            batch.files.append(saved)
            log.info("Stored upload %s (%d bytes)", saved.path, saved.size)
    except PayloadTooLarge:
        for saved in batch.files:
            (target / saved.name).unlink(missing_ok=True)
        raise
    return batch


def decode_content(content: str) -> bytes:
    """Decode a base64 payload, accepting ``data:<mime>;base64,`` prefixes."""
    payload = (content or "").strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    return base64.b64decode(payload, validate=True)


def _write_new_file(directory: Path, name: str, data: bytes) -> Path:
    path, dest = create_unique_file(directory, name)
    try:
        with dest:
            dest.write(data)
    except OSError:
        path.unlink(missing_ok=True)
        raise
    return path


def _record_failure(result: MaterializeResult, item: str, error: Exception) -> None:
    log.warning("Folder upload item %s failed: %s", item, error)
    result.failed.append({"name": item, "message": str(error)})


def _materialize_contents(
    root: Path, descriptor: FolderUpload, directory: Path, result: MaterializeResult
) -> None:
    base = to_relative(root, directory)
    for item in descriptor.files:
        try:
            _write_new_file(directory, item.name, decode_content(item.content))
        except (OSError, ValueError, InvalidName) as e:
            _record_failure(result, f"{base}/{item.name}", e)
            continue
        result.files_written += 1

    for sub in descriptor.folders:
        try:
            sub_dir = create_unique_dir(directory, sub.name)
        except (OSError, InvalidName) as e:
            _record_failure(result, f"{base}/{sub.name}/", e)
            continue
        result.folders_created += 1
        _materialize_contents(root, sub, sub_dir, result)


def materialize_folder(
    root: Path, current_path: str | None, descriptor: FolderUpload
) -> MaterializeResult:
    """Recreate an uploaded folder tree on disk.

    The top-level folder must not exist yet (AlreadyExists); nested files and
    folders are disambiguated with " (n)" suffixes instead. Failures below the
    top level are recorded on the result and do not stop their siblings.
    """
    name = sanitize_name(descriptor.name)
    top = _target_directory(root, current_path) / name
    try:
        top.mkdir()
    except FileExistsError:
        raise AlreadyExists("Folder already exists")

    result = MaterializeResult(name=name, path=to_relative(root, top))
    _materialize_contents(root, descriptor, top, result)
    log.info(
        "Materialized folder upload %s: %d files, %d folders, %d failed",
        result.path,
        result.files_written,
        result.folders_created,
        len(result.failed),
    )
    return result
