# inbox_automation/repositories/mailbox_repository.py
"""
Per-owner mailbox data the worker needs from Postgres: stored Google access
tokens, cleanup preferences, analytics snapshots and unsubscribe candidates.
"""

from typing import Any

from psycopg.types.json import Jsonb

from inbox_automation.db.helpers import execute_query, fetch_one, fetch_val, with_db_retry
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.services.collaborators import CleanupPreferences, UnsubscribeCandidate

logger = get_logger(__name__)


class PostgresMailboxRepository:
    """Implements PreferencesProvider, AnalyticsCollector and CandidateSink."""

    @with_db_retry()
    async def get_access_token(self, owner_id: str) -> str | None:
        return await fetch_val(
            """
            SELECT access_token FROM oauth_tokens
            WHERE user_id = %s AND provider = 'google'
              AND (expires_at IS NULL OR expires_at > NOW())
            """,
            (owner_id,),
        )

    @with_db_retry()
    async def get_cleanup_preferences(self, owner_id: str) -> CleanupPreferences:
        row = await fetch_one(
            "SELECT cleanup_strategy FROM user_preferences WHERE user_id = %s", (owner_id,)
        )
        return CleanupPreferences.from_dict(row["cleanup_strategy"] if row else None)

    @with_db_retry()
    async def record_snapshot(self, owner_id: str, snapshot: dict[str, Any]) -> None:
        await execute_query(
            "INSERT INTO email_stats (user_id, snapshot) VALUES (%s, %s)",
            (owner_id, Jsonb(snapshot)),
        )
        logger.debug("Analytics snapshot stored", owner_id=owner_id)

    @with_db_retry()
    async def save_unsubscribe_candidate(
        self, owner_id: str, candidate: UnsubscribeCandidate
    ) -> None:
        await execute_query(
            """
            INSERT INTO unsubscribe_history (user_id, email_id, sender, subject, method)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id, email_id) DO NOTHING
            """,
            (owner_id, candidate.message_id, candidate.sender, candidate.subject, candidate.method),
        )
