"""
Pytest configuration and fixtures for the palindrome plates API tests.
"""

import os
import shutil
import sqlite3
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from omegaconf import OmegaConf

# Set test environment variables before importing the app
TEST_DATA_DIR = tempfile.mkdtemp(prefix="plates_test_")
os.environ["PLATES_DB_PATH"] = str(Path(TEST_DATA_DIR) / "plates.db")
os.environ["PLATES_MASTER_KEY"] = "test-master-key-12345"
os.environ["PLATES_RATE_LIMIT_RPM"] = "1000"

from plate_gallery import main  # noqa: E402
from plate_gallery.database import PlateDatabase  # noqa: E402
from plate_gallery.storage_service import StorageService  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def test_data_dir():
    """Remove the temporary database directory after the run."""
    yield TEST_DATA_DIR
    shutil.rmtree(TEST_DATA_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def clean_catalog():
    """Start every test with no collectors or palindromes and an empty cache."""
    with sqlite3.connect(os.environ["PLATES_DB_PATH"]) as conn:
        conn.execute("DELETE FROM palindromes")
        conn.execute("DELETE FROM collectors")
    conn.close()
    main.catalog.cache.clear()
    main.upload_limiter.reset()
    yield
    main.app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(main.app)


@pytest.fixture
def master_key():
    return "test-master-key-12345"


@pytest.fixture
def admin_key(client, master_key):
    """API key belonging to an admin profile."""
    response = client.post(
        "/admin/keys",
        json={"email": "admin@example.com", "name": "Test Admin", "is_admin": True},
        headers={"X-API-Key": master_key},
    )
    assert response.status_code == 201
    return response.json()["api_key"]


@pytest.fixture
def viewer_key(client, master_key):
    """API key belonging to a profile without admin rights."""
    response = client.post(
        "/admin/keys",
        json={"email": "viewer@example.com", "name": "Viewer", "is_admin": False},
        headers={"X-API-Key": master_key},
    )
    assert response.status_code == 201
    return response.json()["api_key"]


@pytest.fixture
def s3_client():
    """Stand-in for the boto3 S3 client."""
    return MagicMock()


@pytest.fixture
def storage_config():
    return OmegaConf.create({
        "bucket": "plates-test",
        "allowed_buckets": ["plates-archive"],
        "endpoint_url": "",
        "region": "",
        "public_base_url": "https://cdn.example.com",
        "key_prefix": "palindromes",
        "cache_control": "max-age=3600",
        "max_upload_bytes": 5 * 1024 * 1024,
    })


@pytest.fixture
def storage(storage_config, s3_client):
    return StorageService(storage_config, client=s3_client)


@pytest.fixture
def plate_db(tmp_path):
    """A fresh database outside the app's shared one."""
    return PlateDatabase(tmp_path / "catalog.db")

