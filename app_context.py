"""
Application context for Biblia.
Owns the stores, services and auth client for one application session and
runs the local-to-remote migration whenever a user signs in.
"""

import asyncio
import logging
from typing import Optional

import httpx
from supabase import AsyncClient

from annotations import FavoritesService, HighlightsService, NotesService, ReadingProgressService
from app_config import AppConfig
from auth_session import INITIAL_SESSION, SIGNED_IN, AuthClient, AuthSession, describe_session
from backends import BackendSelector
from local_store import LocalStore
from migration import MigrationCoordinator
from reading_plan import ReadingPlanClient
from remote_store import RemoteStore, create_supabase_client
from scripture import ScriptureClient

logger = logging.getLogger(__name__)


class AppContext:
    """
    Everything the UI needs, wired together.

    Usage:
        ctx = AppContext(load_config())
        await ctx.start()
        await ctx.favorites.load()
        ...
        await ctx.close()
    """

    def __init__(self, config: AppConfig,
                 supabase_client: Optional[AsyncClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.local = LocalStore(config.data_dir)
        self.remote: Optional[RemoteStore] = None
        self.auth: Optional[AuthClient] = None
        self.migration: Optional[MigrationCoordinator] = None
        self.migration_task: Optional[asyncio.Task] = None

        if config.remote_enabled:
            client = supabase_client or create_supabase_client(
                config.supabase_url, config.supabase_anon_key, timeout=config.request_timeout
            )
            self.remote = RemoteStore(client)
            self.auth = AuthClient(client, storage=self.local.storage)
            self.migration = MigrationCoordinator(self.local, self.remote)
            self._unsubscribe = self.auth.on_auth_state_change(self._on_auth_state_change)
        else:
            logger.warning("Supabase is not configured; using local storage only")
            self._unsubscribe = None

        self.backends = BackendSelector(self.local, self.remote, owner_id=self._owner_id)
        self.favorites = FavoritesService(self.backends)
        self.highlights = HighlightsService(self.backends)
        self.notes = NotesService(self.backends)
        self.reading_progress = ReadingProgressService(self.backends)

        self.scripture = ScriptureClient(config.content_base_url,
                                         timeout=config.request_timeout, transport=transport)
        self.reading_plan = ReadingPlanClient(self.scripture)

    def _owner_id(self) -> Optional[str]:
        if self.auth is None or self.auth.user is None:
            return None
        return self.auth.user.id

    async def start(self):
        """
        Restore the persisted session, if any.

        A restored session only migrates when this device never finished a
        migration for that user, e.g. the app quit while one was running.
        """
        if self.auth is not None:
            self.auth.restore_session()

    def _needs_migration(self, event: str, session: Optional[AuthSession]) -> bool:
        if session is None:
            return False
        if event == SIGNED_IN:
            return True
        return (event == INITIAL_SESSION
                and not self.local.migrations.is_migrated(session.user.id))

    def _on_auth_state_change(self, event: str, session: Optional[AuthSession]):
        logger.info("Auth state changed: %s (%s)", event, describe_session(session))
        if session is not None:
            self.remote.set_access_token(session.access_token)
        if self._needs_migration(event, session):
            self.migration_task = asyncio.get_running_loop().create_task(
                self._migrate(session.user.id)
            )

    async def _migrate(self, user_id: str):
        try:
            await self.migration.run(user_id)
        except Exception:
            # Migration is best effort and must never reach the user.
            logger.exception("Local data migration for %s failed", user_id)

    async def wait_for_migration(self):
        """Wait for a pending sign-in migration; call before reloading the services."""
        if self.migration_task is not None:
            await self.migration_task

    async def reload(self):
        """Reload every annotation collection for the current session."""
        await self.wait_for_migration()
        await asyncio.gather(
            self.favorites.load(), self.highlights.load(), self.notes.load()
        )

    async def close(self):
        """Release network clients at the end of the application session."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        if self.migration_task is not None and not self.migration_task.done():
            await self.migration_task
        await self.scripture.close()
        if self.auth is not None:
            await self.auth.close()
        if self.remote is not None:
            await self.remote.close()
