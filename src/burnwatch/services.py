"""
Wiring of the engine's components around one store.

Shared by the API lifespan and the CLI commands.
"""

import logging

from .config.settings import BurnWatchConfig
from .monitoring.anomaly import AnomalyDetector
from .monitoring.post_sync import PostSyncTrigger
from .notifications.dispatcher import NotificationDispatcher
from .security.vault import CredentialVault, CredentialVaultError, FernetCredentialVault
from .storage.base import SyncStore
from .storage.postgres import PostgresStore
from .sync.orchestrator import SyncOrchestrator

# Import adapter implementations to register them with ProviderFactory
from . import providers  # noqa: F401

logger = logging.getLogger(__name__)


def create_vault(config: BurnWatchConfig) -> CredentialVault | None:
    """Build the credential vault; None when no key is configured."""
    try:
        return FernetCredentialVault.from_config(config)
    except CredentialVaultError as e:
        logger.warning(f"⚠️ Credential vault unavailable, syncs will fail: {e}")
        return None


class ServiceContainer:
    """Orchestrator, detector, dispatcher and post-sync trigger sharing one store."""

    def __init__(
        self,
        store: SyncStore,
        config: BurnWatchConfig,
        vault: CredentialVault | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.store = store
        self.config = config
        self.vault = vault
        self.detector = AnomalyDetector(store, config)
        self.dispatcher = dispatcher or NotificationDispatcher(store, config)
        self.post_sync = PostSyncTrigger(self.detector, self.dispatcher)
        self.orchestrator = SyncOrchestrator(store, vault, config, post_sync=self.post_sync)

    @classmethod
    async def connect(cls, config: BurnWatchConfig) -> "ServiceContainer":
        store = await PostgresStore.connect(config.database_url)
        return cls(store, config, vault=create_vault(config))

    async def close(self):
        """Wait for background post-sync work, then release the store."""
        if self.post_sync.pending:
            logger.info(f"Waiting for {self.post_sync.pending} post-sync task(s) to finish")
        await self.post_sync.drain()
        await self.store.close()
