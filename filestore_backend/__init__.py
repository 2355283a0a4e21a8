"""Backend utilities for the file storage server.

This package keeps the FastAPI route handlers in server.py thin:
- path resolution confined to the storage root
- collision-free naming for uploads and new folders
- tree operations (list, create, rename, move, delete, info)
- multipart uploads and folder-upload materialization
- streaming ZIP downloads of folders

Security note:
Every client path is relative to the storage root and is resolved (symlinks
included) before use. Responses only ever carry relative paths; never log
or return the absolute storage root to clients.
"""
