"""
External collaborators called by job handlers.

The analytics collector, the unsubscribe detector and the cleanup-preferences
provider live outside the automation core; handlers only see these protocols.
Defaults here keep the worker usable without a database.
"""

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.mail_domain import MailMessage

logger = get_logger(__name__)


@dataclass(slots=True)
class CleanupPreferences:
    auto_archive_days: int | None = 90
    auto_delete_days: int | None = 365
    preserve_starred: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CleanupPreferences":
        defaults = cls()
        if not data:
            return defaults
        return cls(
            auto_archive_days=data.get("auto_archive_days", defaults.auto_archive_days),
            auto_delete_days=data.get("auto_delete_days", defaults.auto_delete_days),
            preserve_starred=bool(data.get("preserve_starred", defaults.preserve_starred)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class UnsubscribeCandidate:
    message_id: str
    sender: str
    subject: str
    method: str  # "list_unsubscribe_header" or "body_link"


class AnalyticsCollector(Protocol):
    async def record_snapshot(self, owner_id: str, snapshot: dict[str, Any]) -> None: ...


class UnsubscribeDetector(Protocol):
    async def detect(self, owner_id: str, message: MailMessage) -> UnsubscribeCandidate | None: ...


class PreferencesProvider(Protocol):
    async def get_cleanup_preferences(self, owner_id: str) -> CleanupPreferences: ...


class CandidateSink(Protocol):
    async def save_unsubscribe_candidate(
        self, owner_id: str, candidate: UnsubscribeCandidate
    ) -> None: ...


class DefaultPreferencesProvider:
    async def get_cleanup_preferences(self, owner_id: str) -> CleanupPreferences:
        return CleanupPreferences()


class LoggingAnalyticsCollector:
    """Analytics sink that only logs; used when no database is configured."""

    async def record_snapshot(self, owner_id: str, snapshot: dict[str, Any]) -> None:
        logger.info(
            "Analytics snapshot collected",
            owner_id=owner_id,
            total_emails=snapshot.get("total_emails"),
            unread_emails=snapshot.get("unread_emails"),
        )


class ListUnsubscribeDetector:
    """
    Flags newsletter-style messages: a List-Unsubscribe header, or the word
    "unsubscribe" in the snippet or body. Candidates go to ``sink`` when given.
    """

    def __init__(self, sink: CandidateSink | None = None):
        self._sink = sink

    async def detect(self, owner_id: str, message: MailMessage) -> UnsubscribeCandidate | None:
        if message.has_unsubscribe_header:
            method = "list_unsubscribe_header"
        elif "unsubscribe" in f"{message.snippet} {message.body}".lower():
            method = "body_link"
        else:
            return None

        candidate = UnsubscribeCandidate(
            message_id=message.id,
            sender=message.sender,
            subject=message.subject,
            method=method,
        )
        if self._sink is not None:
            await self._sink.save_unsubscribe_candidate(owner_id, candidate)
        return candidate
