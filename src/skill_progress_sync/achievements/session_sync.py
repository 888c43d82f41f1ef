"""Per-session wiring of the progress store, awarder and reconciliation."""

from collections.abc import Iterable

import httpx
import structlog

from skill_progress_sync.achievements.awarder import AchievementAwarder
from skill_progress_sync.achievements.reconcile import ReconciliationSync
from skill_progress_sync.config import Settings
from skill_progress_sync.models.achievement import ReconciliationReport, ServerSyncResult
from skill_progress_sync.remote.client import CredentialProvider, ProgressApiClient
from skill_progress_sync.remote.progress_store import ProgressStore
from skill_progress_sync.remote.result import ServiceUnavailable
from skill_progress_sync.storage.fallback_cache import LocalFallbackCache
from skill_progress_sync.storage.key_value import JsonFileStorage, KeyValueStorage

logger = structlog.get_logger()


class ProgressSyncService:
    """Owns the components a signed-in learner session needs.

    Args:
        client: Transport to the remote progress API.
        storage: Backing storage for the local star mirror.
    """

    def __init__(self, client: ProgressApiClient, storage: KeyValueStorage):
        self.client = client
        self.store = ProgressStore(client)
        self.cache = LocalFallbackCache(storage)
        self.awarder = AchievementAwarder(self.store, self.cache)
        self.reconciler = ReconciliationSync(self.store, self.awarder)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credentials: str | CredentialProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        storage: KeyValueStorage | None = None,
    ) -> "ProgressSyncService":
        client = ProgressApiClient(
            settings.api_base_url,
            credentials=credentials if credentials is not None else settings.session_token,
            timeout_seconds=settings.request_timeout_seconds,
            http_client=http_client,
        )
        if storage is None:
            storage = JsonFileStorage(settings.local_storage_dir, settings.origin)
        return cls(client, storage)

    async def on_session_start(
        self, skill_catalog: Iterable[str]
    ) -> ServerSyncResult | ReconciliationReport:
        """Repair star drift once per authenticated session.

        The server-side bulk sync is preferred; when it is unavailable the
        catalog is reconciled from this side.
        """
        server_sync = await self.awarder.request_server_sync()
        if server_sync.attempted:
            return server_sync

        try:
            summary = await self.store.get_summary()
        except ServiceUnavailable as exc:
            logger.info("session_sync_summary_unavailable", error_kind=exc.error_kind.value)
            summary = None
        return await self.reconciler.run(skill_catalog, summary)

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "ProgressSyncService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
