"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from app.clients.sqlite_store import SQLiteDatabase
from app.services.credential_vault import CredentialVault
from app.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def database(tmp_path) -> SQLiteDatabase:
    return SQLiteDatabase(str(tmp_path / "creator-sync.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="vault-secret")


@pytest.fixture
def vault(database: SQLiteDatabase, cipher: TokenCipherService) -> CredentialVault:
    return CredentialVault(database, cipher)
