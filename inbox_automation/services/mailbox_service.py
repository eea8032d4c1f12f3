"""
Mailbox gateway: the mail-client handle job handlers and the rules engine use.

Reads go cache first, then through the resilience service to the provider.
Writes go through the resilience service and always invalidate the
message-list and counts namespaces afterwards, whether or not they succeeded.
"""

from typing import Protocol

from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.mail_domain import (
    BulkOperationResult,
    MailboxCounts,
    MailLabel,
    MailMessage,
)
from inbox_automation.services.cache_service import CacheNamespace, MailCacheService
from inbox_automation.services.resilience.service import ResilienceService

logger = get_logger(__name__)


class MailProvider(Protocol):
    """Raw mail-provider capability (Gmail in production, fakes in tests)."""

    async def list_messages(self, query: str, max_results: int) -> list[MailMessage]: ...

    async def list_labels(self) -> list[MailLabel]: ...

    async def get_mailbox_counts(self) -> MailboxCounts: ...

    async def archive(self, ids: list[str]) -> BulkOperationResult: ...

    async def delete(self, ids: list[str]) -> BulkOperationResult: ...

    async def add_labels(self, ids: list[str], label_ids: list[str]) -> BulkOperationResult: ...

    async def mark_read(self, ids: list[str]) -> BulkOperationResult: ...

    async def mark_unread(self, ids: list[str]) -> BulkOperationResult: ...

    async def star(self, ids: list[str]) -> BulkOperationResult: ...

    async def unstar(self, ids: list[str]) -> BulkOperationResult: ...


class MailboxService:
    """One owner's mailbox, wired to the process-wide cache and resilience service."""

    def __init__(
        self,
        provider: MailProvider,
        owner_id: str,
        cache: MailCacheService,
        resilience: ResilienceService,
    ):
        self.provider = provider
        self.owner_id = owner_id
        self.cache = cache
        self.resilience = resilience

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_messages(self, query: str, max_results: int) -> list[MailMessage]:
        key = self.cache.messages_key(self.owner_id, query, max_results)
        return await self.cache.get_or_load(
            CacheNamespace.MESSAGES,
            key,
            lambda: self.resilience.execute_with_retry(
                lambda: self.provider.list_messages(query, max_results), "list_messages"
            ),
        )

    async def list_labels(self) -> list[MailLabel]:
        return await self.cache.get_or_load(
            CacheNamespace.LABELS,
            self.cache.labels_key(self.owner_id),
            lambda: self.resilience.execute_with_retry(self.provider.list_labels, "list_labels"),
        )

    async def get_mailbox_counts(self) -> MailboxCounts:
        return await self.cache.get_or_load(
            CacheNamespace.COUNTS,
            self.cache.counts_key(self.owner_id),
            lambda: self.resilience.execute_with_retry(
                self.provider.get_mailbox_counts, "get_mailbox_counts"
            ),
        )

    def get_analytics(self, days: int) -> dict | None:
        return self.cache.get(CacheNamespace.ANALYTICS, self.cache.analytics_key(self.owner_id, days))

    def store_analytics(self, days: int, snapshot: dict) -> None:
        self.cache.set(CacheNamespace.ANALYTICS, self.cache.analytics_key(self.owner_id, days), snapshot)

    async def resolve_label_ids(self, names: list[str]) -> list[str]:
        """Map label names (case-insensitive) to ids; unknown names pass through as ids."""
        labels = await self.list_labels()
        by_name = {label.name.lower(): label.id for label in labels}
        return [by_name.get(name.lower(), name) for name in names]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _mutate(self, operation: str, call) -> BulkOperationResult:
        try:
            result = await self.resilience.execute_with_retry(call, operation)
        finally:
            self.cache.invalidate(CacheNamespace.MESSAGES)
            self.cache.invalidate(CacheNamespace.COUNTS)

        if not result.success:
            logger.warning(
                "Mailbox operation partially failed",
                owner_id=self.owner_id,
                operation=operation,
                processed_count=result.processed_count,
                error_count=len(result.errors),
            )
        return result

    async def archive(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("archive", lambda: self.provider.archive(ids))

    async def delete(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("delete", lambda: self.provider.delete(ids))

    async def add_labels(self, ids: list[str], label_ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("add_labels", lambda: self.provider.add_labels(ids, label_ids))

    async def mark_read(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("mark_read", lambda: self.provider.mark_read(ids))

    async def mark_unread(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("mark_unread", lambda: self.provider.mark_unread(ids))

    async def star(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("star", lambda: self.provider.star(ids))

    async def unstar(self, ids: list[str]) -> BulkOperationResult:
        if not ids:
            return BulkOperationResult.empty()
        return await self._mutate("unstar", lambda: self.provider.unstar(ids))
