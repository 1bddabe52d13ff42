# essayplans/conftest.py
import pytest

from essayplans.core.database import create_all_tables, dispose_engine, init_engine


@pytest.fixture(autouse=True)
def fresh_database(tmp_path, monkeypatch):
    """
    Point the engine at a fresh SQLite file for every test.

    A file (not :memory:) so pooled connections in different threads share
    the same database and its locks.
    """
    url = f"sqlite:///{tmp_path / 'essayplans.db'}"
    monkeypatch.setenv("TEST_DATABASE_URL", url)
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from essayplans.main import app

    return TestClient(app)
