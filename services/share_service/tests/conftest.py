"""Shared fixtures for share service tests."""

import pytest
from fastapi.testclient import TestClient

from share_service.config import Settings
from share_service.main import create_app


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary data dir, with the sweeper off.

    Returns:
        Settings instance for testing.
    """
    return Settings(
        data_dir=str(tmp_path / "data"),
        base_url="http://testserver/",
        max_file_size=1024,
        max_file_count=4,
        sweeper_enabled=False,
    )


@pytest.fixture
def client(settings):
    """Running app with startup already done.

    Yields:
        TestClient bound to a fresh app.
    """
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def make_files():
    """Factory for the multipart ``files`` field.

    Returns:
        Callable turning ``(name, content)`` pairs into request files.
    """

    def _make(*named):
        return [("files", (name, content, "application/octet-stream")) for name, content in named]

    return _make
