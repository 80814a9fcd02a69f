import pytest

from ledger import connection, database


@pytest.fixture
def ledger_db(tmp_path, monkeypatch):
    """A fresh SQLite ledger for each test."""
    monkeypatch.setattr(connection, "DATABASE_URL", f"sqlite:///{tmp_path / 'race.db'}")
    database.initialize_database()
    return database
