"""Shared fixtures for file storage tests."""

import os
import tempfile

# config creates the storage root at import time; keep it out of the project tree.
os.environ.setdefault("FILESTORE_UPLOAD_DIR", tempfile.mkdtemp(prefix="filestore-tests-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402


@pytest.fixture
def storage_root(tmp_path):
    """Empty storage root for one test.

    Returns:
        Resolved path of a fresh directory.
    """
    root = tmp_path / "storage"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def client(storage_root, monkeypatch):
    """HTTP client whose routes operate on ``storage_root``."""
    import server

    monkeypatch.setattr(server, "STORAGE_ROOT", storage_root)
    with TestClient(server.app) as test_client:
        yield test_client
