from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path
from typing import BinaryIO, Iterator

from .config import ZIP_CHUNK_SIZE
from .errors import NotFound, StorageIOError
from .security import is_inside_root, resolve_path, to_relative


log = logging.getLogger(__name__)

COMPRESS_LEVEL = 9


class _StreamSink:
    """Write-only buffer handed to ZipFile.

    It has no tell()/seek(), so zipfile switches to streaming mode (data
    descriptors after each entry) and never rewinds into bytes we already
    handed to the client.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        self._buffer += data
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def _add_directory(zf: zipfile.ZipFile, path: Path, arcname: str) -> None:
    info = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
    zf.writestr(info, b"")


def _add_file(
    zf: zipfile.ZipFile, sink: _StreamSink, path: Path, arcname: str, chunk_size: int
) -> Iterator[bytes]:
    info = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
    info.compress_type = zipfile.ZIP_DEFLATED
    # Same attribute ZipFile.write() sets; open(info, "w") ignores ZipFile's own level.
    info._compresslevel = COMPRESS_LEVEL
    # Opening the source can still fail cleanly (the caller skips the file);
    # once the entry header is out, a read error can only end the stream.
    with open(path, "rb") as src, zf.open(info, "w") as dest:
        while True:
            try:
                chunk = src.read(chunk_size)
            except OSError as e:
                log.error("Read of %s failed mid-entry; archive truncated", arcname)
                raise StorageIOError(f"Archive truncated at {arcname}") from e
            if not chunk:
                break
            dest.write(chunk)
            data = sink.drain()
            if data:
                yield data
    data = sink.drain()
    if data:
        yield data


def _stream_zip(root: Path, folder: Path, chunk_size: int) -> Iterator[bytes]:
    sink = _StreamSink()
    top = folder.name or "archive"
    label = to_relative(root, folder) or "/"
    files = dirs = skipped = 0

    def _walk_error(err: OSError) -> None:
        nonlocal skipped
        skipped += 1
        log.warning("Skipping unreadable folder %s in archive: %s", err.filename, err)

    try:
        with zipfile.ZipFile(
            sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=COMPRESS_LEVEL,
            allowZip64=True,
        ) as zf:
            for dirpath, dirnames, filenames in os.walk(folder, onerror=_walk_error):
                current = Path(dirpath)
                rel_dir = current.relative_to(folder).as_posix()
                arc_dir = top if rel_dir == "." else f"{top}/{rel_dir}"
                # os.walk never descends into these; without this they vanish silently.
                for name in [d for d in dirnames if (current / d).is_symlink()]:
                    dirnames.remove(name)
                    skipped += 1
                    log.warning("Skipping linked folder %s/%s in archive", arc_dir, name)
                dirnames.sort(key=str.casefold)
                filenames.sort(key=str.casefold)

                try:
                    _add_directory(zf, current, arc_dir)
                    dirs += 1
                except OSError as e:
                    skipped += 1
                    log.warning("Skipping folder entry %s: %s", arc_dir, e)
                data = sink.drain()
                if data:
                    yield data

                for name in filenames:
                    path = current / name
                    arcname = f"{arc_dir}/{name}"
                    if not is_inside_root(root, path):
                        skipped += 1
                        log.warning("Skipping %s: link points outside the storage root", arcname)
                        continue
                    try:
                        yield from _add_file(zf, sink, path, arcname, chunk_size)
                        files += 1
                    except OSError as e:
                        skipped += 1
                        log.warning("Skipping file %s in archive: %s", arcname, e)
                        data = sink.drain()
                        if data:
                            yield data
    except GeneratorExit:
        # Consumer went away (client disconnected); stop walking the tree.
        log.info("Archive stream for %s aborted by client", label)
        raise
    except Exception:
        log.exception("Archive stream for %s failed after the response started", label)
        raise

    # Central directory written by ZipFile.close().
    data = sink.drain()
    if data:
        yield data
    log.info("Streamed archive of %s: %d files, %d folders, %d skipped", label, files, dirs, skipped)


def iter_folder_zip(
    root: Path, relative_path: str | None, chunk_size: int = ZIP_CHUNK_SIZE
) -> Iterator[bytes]:
    """Return an iterator producing a zip of the folder, chunk by chunk.

    Validation runs eagerly (this is not a generator function), so a missing
    folder raises NotFound before any byte of the response is produced.
    """
    folder = resolve_path(root, relative_path)
    if not folder.is_dir():
        raise NotFound("Folder not found")
    return _stream_zip(root.resolve(), folder, chunk_size)


def write_folder_zip(root: Path, relative_path: str | None, sink: BinaryIO) -> None:
    for chunk in iter_folder_zip(root, relative_path):
        sink.write(chunk)
