"""Service layer exports."""

from .connections import CallbackOutcome, ConnectionService
from .content import ContentService
from .content_catalog import ContentCatalog
from .credential_vault import CredentialVault
from .credentials import CredentialService
from .metrics import MetricsAggregator
from .oauth_state import OAuthStateManager
from .scheduled_sync import run_scheduled_sync
from .snapshot_store import SnapshotStore, snapshot_date
from .sync import SyncOrchestrator
from .token_cipher import TokenCipherService

__all__ = [
    "CallbackOutcome",
    "ConnectionService",
    "ContentCatalog",
    "ContentService",
    "CredentialService",
    "CredentialVault",
    "MetricsAggregator",
    "OAuthStateManager",
    "SnapshotStore",
    "SyncOrchestrator",
    "TokenCipherService",
    "run_scheduled_sync",
    "snapshot_date",
]
