import os
import tempfile

# Set env vars for tests before any app imports
_tmp = tempfile.mkdtemp(prefix="mediaworker-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test_mediaworker.db')}"
os.environ["REDIS_URL"] = ""
os.environ["DATA_DIR"] = _tmp
os.environ["TMP_DIR"] = os.path.join(_tmp, "tmp")
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_STORAGE_DIR"] = os.path.join(_tmp, "media")
os.environ["PUBLIC_BASE_URL"] = "http://testserver/media"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["AUTH_SKIP_VERIFY"] = "false"

import pytest

from app.core.config import settings


@pytest.fixture
def tmp_settings(tmp_path, monkeypatch):
    """point scratch files and local storage at a per-test directory"""
    monkeypatch.setattr(settings, "TMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setattr(settings, "LOCAL_STORAGE_DIR", str(tmp_path / "media"))
    return tmp_path
