"""End-to-end tests for the application context: sign-in, migration and reload."""

import httpx
import pytest
from supabase import PostgrestAPIError

from app_config import AppConfig
from app_context import AppContext
from auth_session import SESSION_KEY
from local_store import KeyValueStorage


@pytest.fixture
def config(temp_data_dir):
    return AppConfig(data_dir=temp_data_dir, supabase_url="https://example.supabase.co",
                     supabase_anon_key="anon-key", content_base_url="http://content.test")


def make_context(config, supabase_client):
    return AppContext(config, supabase_client=supabase_client,
                      transport=httpx.MockTransport(lambda request: httpx.Response(404)))


def store_session(data_dir, user_id="user-1"):
    KeyValueStorage(data_dir).set_json(SESSION_KEY, {
        "access_token": "jwt-stored", "refresh_token": None, "expires_in": None,
        "user": {"id": user_id, "email": "reader@example.com"},
    })


class TestAppContext:
    """Tests for AppContext wiring."""

    def test_local_only_without_supabase(self, temp_data_dir):
        ctx = AppContext(AppConfig(data_dir=temp_data_dir))
        assert ctx.remote is None
        assert ctx.auth is None
        assert ctx.backends.favorites().is_remote is False

    @pytest.mark.asyncio
    async def test_sign_in_migrates_then_reload_reads_remote(self, config, supabase_client):
        ctx = make_context(config, supabase_client)
        await ctx.start()
        await ctx.favorites.add(43, 3, 16)
        await ctx.notes.add(1, 1, 1, "Beginning")

        assert await ctx.auth.sign_in("r@example.com", "secret1") is None
        await ctx.reload()

        assert [(f.book, f.verse) for f in ctx.favorites.items] == [(43, 16)]
        assert [n.content for n in ctx.notes.items] == ["Beginning"]
        assert ctx.local.migrations.is_migrated("user-1")
        assert all(r["user_id"] == "user-1" for r in supabase_client.rows("favorites"))
        await ctx.close()

    @pytest.mark.asyncio
    async def test_migration_failure_does_not_block_sign_in(self, config, supabase_client):
        ctx = make_context(config, supabase_client)
        await ctx.favorites.add(1, 1, 1)
        supabase_client.error = PostgrestAPIError({"message": "unavailable", "code": "503"})

        assert await ctx.auth.sign_in("r@example.com", "secret1") is None
        await ctx.wait_for_migration()

        assert ctx.local.migrations.is_migrated("user-1")
        assert supabase_client.rows("favorites") == []
        await ctx.close()

    @pytest.mark.asyncio
    async def test_sign_out_returns_to_local(self, config, supabase_client):
        ctx = make_context(config, supabase_client)
        await ctx.auth.sign_in("r@example.com", "secret1")
        await ctx.wait_for_migration()
        await ctx.auth.sign_out()

        await ctx.favorites.add(2, 2, 2)

        assert ctx.backends.favorites().is_remote is False
        assert len(ctx.local.favorites.get_all()) == 1
        await ctx.close()


class TestRestoredSession:
    """A session persisted by an earlier run of the app."""

    @pytest.mark.asyncio
    async def test_already_migrated_user_does_not_migrate(self, config, supabase_client):
        store_session(config.data_dir)
        ctx = make_context(config, supabase_client)
        ctx.local.migrations.mark_migrated("user-1")
        await ctx.favorites.add(5, 5, 5)

        await ctx.start()

        assert ctx.migration_task is None
        assert ctx.backends.owner_id() == "user-1"
        assert supabase_client.postgrest.token == "jwt-stored"
        await ctx.close()

    @pytest.mark.asyncio
    async def test_interrupted_migration_resumes(self, config, supabase_client):
        store_session(config.data_dir)
        local_ctx = AppContext(AppConfig(data_dir=config.data_dir))
        await local_ctx.favorites.add(19, 23, 1)

        ctx = make_context(config, supabase_client)
        await ctx.start()
        await ctx.wait_for_migration()

        assert ctx.local.migrations.is_migrated("user-1")
        assert [(r["book"], r["user_id"]) for r in supabase_client.rows("favorites")] == [
            (19, "user-1"),
        ]
        await ctx.close()
