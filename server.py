from __future__ import annotations

import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from filestore_backend.config import (
    ALLOWED_MIME_TYPES,
    LOG_LEVEL,
    MAX_FILE_BYTES,
    MAX_FILES_PER_REQUEST,
    UPLOAD_DIR,
)
from filestore_backend.errors import (
    FileStoreError,
    InvalidRequest,
    NotFound,
    StorageIOError,
    TooManyFiles,
)
from filestore_backend.security import normalize_relative_path, resolve_path
from filestore_backend.tree import (
    create_folder,
    delete_entry,
    file_info,
    list_directory,
    move_entry,
    rename_entry,
)
from filestore_backend.uploads import FolderUpload, materialize_folder, save_uploads
from filestore_backend.zip_utils import iter_folder_zip


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("filestore.server")

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"
STORAGE_ROOT = UPLOAD_DIR
START_TIME = time.monotonic()


class FolderUploadRequest(BaseModel):
    folderData: FolderUpload
    currentPath: str = ""


class CreateFolderRequest(BaseModel):
    folderName: str
    currentPath: str = ""


class DeleteRequest(BaseModel):
    filePath: str


class RenameRequest(BaseModel):
    oldPath: str
    newName: str


class MoveRequest(BaseModel):
    sourcePath: str
    targetPath: str = ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    STORAGE_ROOT.mkdir(parents=True, exist_ok=True)
    log.info("File storage server ready, storage root: %s", STORAGE_ROOT)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def _no_cache_static_assets(request: Request, call_next):
    response = await call_next(request)
    path = (request.url.path or "").lower()
    # Make local iteration predictable: ensure browsers always re-fetch edited assets.
    if path.endswith((".css", ".js", ".html")) and not path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response


def _failure(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "message": message, "code": code}, status_code=status_code)


@app.exception_handler(FileStoreError)
async def _file_store_error(request: Request, exc: FileStoreError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _failure(exc.message, exc.code, exc.status_code)


_HTTP_CODES = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown routes and wrong methods get the same JSON shape as the API errors.
    response = _failure(str(exc.detail), _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"), exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _failure(f"Invalid request: {details}", InvalidRequest.code, 400)


@app.exception_handler(OSError)
async def _os_error(request: Request, exc: OSError) -> JSONResponse:
    # Unexpected filesystem failure; never leak absolute paths to the client.
    log.exception("%s %s failed with a storage error", request.method, request.url.path)
    return _failure(StorageIOError.default_message, StorageIOError.code, StorageIOError.status_code)


def _attachment_headers(filename: str) -> dict:
    quoted = quote(filename)
    if quoted != filename:
        disposition = f"attachment; filename*=utf-8''{quoted}"
    else:
        disposition = f'attachment; filename="{filename}"'
    return {
        "Content-Disposition": disposition,
        "Cache-Control": "no-store",
        "X-Content-Type-Options": "nosniff",
    }


@app.get("/api/files")
def list_files(path: str = "") -> JSONResponse:
    listing = list_directory(STORAGE_ROOT, path)
    return JSONResponse({"success": True, **listing.to_dict()})


@app.post("/api/upload")
async def upload_files(request: Request) -> JSONResponse:
    """Store one or more multipart files (field ``files[]`` or ``files``) under ``currentPath``."""
    try:
        # One past the cap so save_uploads reports the overflow with the usual message.
        form = await request.form(max_files=MAX_FILES_PER_REQUEST + 1)
    except StarletteHTTPException as e:
        if "Too many files" in str(e.detail):
            raise TooManyFiles(f"Too many files: at most {MAX_FILES_PER_REQUEST} per upload")
        raise InvalidRequest(str(e.detail))
    uploads = [
        f for f in form.getlist("files[]") + form.getlist("files") if isinstance(f, UploadFile)
    ]
    current_path = form.get("currentPath")
    if not isinstance(current_path, str):
        current_path = ""

    batch = await run_in_threadpool(
        save_uploads,
        STORAGE_ROOT,
        current_path,
        uploads,
        max_file_bytes=MAX_FILE_BYTES,
        max_files=MAX_FILES_PER_REQUEST,
        allowed_types=ALLOWED_MIME_TYPES,
    )
    return JSONResponse(
        {
            "success": True,
            "message": "Files uploaded successfully",
            "files": [f.to_dict() for f in batch.files],
            "count": len(batch.files),
            "totalSize": batch.total_size,
            "failed": batch.failed,
        }
    )


@app.post("/api/upload-folder")
def upload_folder(payload: FolderUploadRequest) -> JSONResponse:
    """Recreate a client-side folder tree (base64 file contents) under ``currentPath``."""
    result = materialize_folder(STORAGE_ROOT, payload.currentPath, payload.folderData)
    return JSONResponse(
        {
            "success": True,
            "message": "Folder uploaded successfully",
            "path": result.path,
            "name": result.name,
            "filesWritten": result.files_written,
            "foldersCreated": result.folders_created,
            "failed": result.failed,
        }
    )


@app.post("/api/folder")
def new_folder(payload: CreateFolderRequest) -> JSONResponse:
    rel = create_folder(STORAGE_ROOT, payload.currentPath, payload.folderName)
    return JSONResponse({"success": True, "message": "Folder created successfully", "name": Path(rel).name, "path": rel})


@app.delete("/api/delete")
def delete_item(payload: DeleteRequest) -> JSONResponse:
    rel = delete_entry(STORAGE_ROOT, payload.filePath, force=False)
    return JSONResponse({"success": True, "message": "Deleted successfully", "path": rel})


@app.delete("/api/delete-force")
def force_delete_item(payload: DeleteRequest) -> JSONResponse:
    rel = delete_entry(STORAGE_ROOT, payload.filePath, force=True)
    return JSONResponse({"success": True, "message": "Deleted successfully", "path": rel})


@app.get("/api/download")
def download_file(path: str = "") -> FileResponse:
    target = resolve_path(STORAGE_ROOT, path)
    if not target.exists():
        raise NotFound("File not found")
    if target.is_dir():
        raise InvalidRequest("Cannot download folder directly")
    # FileResponse streams from disk and sets Content-Length.
    return FileResponse(target, headers=_attachment_headers(target.name))


@app.get("/api/download-folder")
def download_folder(path: str = "") -> StreamingResponse:
    """Stream a folder as a ZIP built on the fly.

    Errors after the first chunk can no longer become a JSON response; they
    are logged by the streamer and the connection is cut.
    """
    chunks = iter_folder_zip(STORAGE_ROOT, path)
    name = resolve_path(STORAGE_ROOT, path).name or "archive"
    return StreamingResponse(chunks, media_type="application/zip", headers=_attachment_headers(f"{name}.zip"))


@app.put("/api/rename")
def rename_item(payload: RenameRequest) -> JSONResponse:
    new_rel = rename_entry(STORAGE_ROOT, payload.oldPath, payload.newName)
    return JSONResponse(
        {
            "success": True,
            "message": "Renamed successfully",
            "oldPath": normalize_relative_path(payload.oldPath),
            "newPath": new_rel,
            "newName": Path(new_rel).name,
        }
    )


@app.put("/api/move")
def move_item(payload: MoveRequest) -> JSONResponse:
    new_rel = move_entry(STORAGE_ROOT, payload.sourcePath, payload.targetPath)
    return JSONResponse(
        {
            "success": True,
            "message": "Moved successfully",
            "oldPath": normalize_relative_path(payload.sourcePath),
            "newPath": new_rel,
        }
    )


@app.get("/api/file-info")
def get_file_info(path: str = "") -> JSONResponse:
    return JSONResponse({"success": True, "info": file_info(STORAGE_ROOT, path)})


def _memory_usage() -> dict:
    try:
        import resource
    except ImportError:
        # Not available on Windows.
        return {}
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere.
    if sys.platform != "darwin":
        max_rss *= 1024
    return {"maxRssBytes": int(max_rss)}


@app.get("/health")
def health() -> JSONResponse:
    return JSONResponse(
        {
            "status": "OK",
            "uptime": round(time.monotonic() - START_TIME, 3),
            # Only the folder name: the absolute storage root stays server-side.
            "uploadDir": STORAGE_ROOT.name,
            "writable": STORAGE_ROOT.is_dir() and os.access(STORAGE_ROOT, os.W_OK),
            "memory": _memory_usage(),
        }
    )


# Static client (optional): served from ./public when present.
# Note: define API routes above, then mount static at '/'.
if PUBLIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="static")


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False)
