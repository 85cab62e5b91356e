"""
Membership state recording for team renames and bot installs/uninstalls.

The dispatcher only depends on the MembershipStateRecorder protocol. Two
implementations are provided:
- PostgresMembershipRecorder keeps team_data / user_data rows in PostgreSQL
- LoggingMembershipRecorder only logs, for deployments without a database
"""

import logging
from typing import Protocol

import asyncpg

from welcome_bot.app.errors import RecorderFailure
from welcome_bot.app.models.events import ConversationEvent, ConversationScope

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS team_data (
        team_id TEXT PRIMARY KEY,
        name TEXT,
        service_url TEXT,
        tenant_id TEXT,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    );
    CREATE TABLE IF NOT EXISTS user_data (
        user_id TEXT PRIMARY KEY,
        aad_object_id TEXT,
        conversation_id TEXT,
        service_url TEXT,
        tenant_id TEXT,
        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
    );
"""

UPSERT_TEAM_SQL = """
    INSERT INTO team_data (team_id, name, service_url, tenant_id, created_at, updated_at)
    VALUES ($1, $2, $3, $4, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT (team_id) DO UPDATE SET
        name = COALESCE(EXCLUDED.name, team_data.name),
        service_url = COALESCE(EXCLUDED.service_url, team_data.service_url),
        tenant_id = COALESCE(EXCLUDED.tenant_id, team_data.tenant_id),
        updated_at = CURRENT_TIMESTAMP
"""

UPSERT_USER_SQL = """
    INSERT INTO user_data (user_id, aad_object_id, conversation_id, service_url, tenant_id, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT (user_id) DO UPDATE SET
        aad_object_id = EXCLUDED.aad_object_id,
        conversation_id = EXCLUDED.conversation_id,
        service_url = EXCLUDED.service_url,
        tenant_id = EXCLUDED.tenant_id,
        updated_at = CURRENT_TIMESTAMP
"""


class MembershipStateRecorder(Protocol):
    """Sink for team metadata and bot lifecycle changes."""

    async def on_team_info_updated(self, event: ConversationEvent) -> None:
        ...

    async def on_bot_added(self, event: ConversationEvent) -> None:
        ...

    async def on_bot_removed(self, event: ConversationEvent) -> None:
        ...


class LoggingMembershipRecorder:
    """Recorder used when no database is configured."""

    async def on_team_info_updated(self, event: ConversationEvent) -> None:
        team = event.channel_data.team if event.channel_data else None
        logger.info(
            f"Team {team.id if team else 'unknown'} renamed to "
            f"{team.name if team else 'unknown'!r} (not persisted)"
        )

    async def on_bot_added(self, event: ConversationEvent) -> None:
        logger.info(f"Bot added to {event.scope.value} scope {event.scope_id} (not persisted)")

    async def on_bot_removed(self, event: ConversationEvent) -> None:
        logger.info(f"Bot removed from {event.scope.value} scope {event.scope_id} (not persisted)")


class PostgresMembershipRecorder:
    """
    Persists bot installations in PostgreSQL.

    Team installs are keyed by team ID; personal installs by the user's
    channel account ID, with the conversation ID kept for later messaging.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def create(
        cls,
        dsn: str,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 10.0
    ) -> "PostgresMembershipRecorder":
        """Open a connection pool and make sure the tables exist."""
        pool = await asyncpg.create_pool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout
        )
        recorder = cls(pool)
        await recorder.ensure_schema()
        logger.info("PostgresMembershipRecorder initialized")
        return recorder

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def close(self) -> None:
        await self.pool.close()

    async def _execute(self, operation: str, query: str, *args) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except Exception as e:
            logger.error(f"Failed to record {operation}: {e}", exc_info=True)
            raise RecorderFailure(f"Failed to record {operation}: {e}") from e

    async def on_team_info_updated(self, event: ConversationEvent) -> None:
        """Store the new name of a renamed team."""
        team = event.channel_data.team if event.channel_data else None
        if team is None or not team.id:
            logger.warning("Team rename event without team ID, nothing to record")
            return

        await self._execute(
            "team rename",
            UPSERT_TEAM_SQL,
            team.id,
            team.name,
            event.service_url,
            event.tenant_id
        )
        logger.info(f"Recorded rename of team {team.id} to {team.name!r}")

    async def on_bot_added(self, event: ConversationEvent) -> None:
        """Store a team or personal installation of the bot."""
        if event.scope == ConversationScope.TEAM and event.team_id:
            team = event.channel_data.team
            await self._execute(
                "team install",
                UPSERT_TEAM_SQL,
                team.id,
                team.name,
                event.service_url,
                event.tenant_id
            )
            logger.info(f"Recorded bot install in team {team.id}")
            return

        user = event.from_
        if user is None:
            logger.warning(f"Personal install in {event.conversation_id} without sender, nothing to record")
            return

        await self._execute(
            "personal install",
            UPSERT_USER_SQL,
            user.id,
            user.aad_object_id,
            event.conversation_id,
            event.service_url,
            event.tenant_id
        )
        logger.info(f"Recorded personal bot install for user {user.id}")

    async def on_bot_removed(self, event: ConversationEvent) -> None:
        """Forget a team or personal installation of the bot."""
        if event.scope == ConversationScope.TEAM and event.team_id:
            result = await self._execute(
                "team uninstall",
                "DELETE FROM team_data WHERE team_id = $1",
                event.team_id
            )
            target = f"team {event.team_id}"
        elif event.from_ is not None:
            result = await self._execute(
                "personal uninstall",
                "DELETE FROM user_data WHERE user_id = $1",
                event.from_.id
            )
            target = f"user {event.from_.id}"
        else:
            logger.warning(f"Bot removal in {event.conversation_id} without team or sender, nothing to record")
            return

        deleted = (result or "").split()[-1:] != ["0"]
        if deleted:
            logger.info(f"Removed bot install for {target}")
        else:
            logger.warning(f"No bot install found to remove for {target}")
