# inbox_automation/models/domain/mail_domain.py
"""
Mail Domain Models
Provider-neutral message records and bulk-operation outcomes exchanged
between the mail provider, the cache, the rules engine and job handlers.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(slots=True)
class MailMessage:
    """A message record as seen by rule evaluation and job handlers."""

    id: str
    thread_id: str | None = None
    sender: str = ""
    to: str = ""
    subject: str = ""
    snippet: str = ""
    body: str = ""
    date: datetime | None = None
    size_estimate: int = 0
    has_attachment: bool = False
    label_ids: list[str] = field(default_factory=list)
    has_unsubscribe_header: bool = False

    @property
    def is_unread(self) -> bool:
        return "UNREAD" in self.label_ids

    @property
    def is_starred(self) -> bool:
        return "STARRED" in self.label_ids

    def age_days(self, now: datetime) -> int:
        """Whole days between the message date and ``now`` (0 when undated)."""
        if self.date is None:
            return 0
        received = self.date if self.date.tzinfo else self.date.replace(tzinfo=UTC)
        return int((now - received).total_seconds() // 86400)

    def preview(self) -> dict:
        return {
            "id": self.id,
            "subject": self.subject,
            "from": self.sender,
            "date": self.date.isoformat() if self.date else None,
            "snippet": self.snippet,
        }


@dataclass(slots=True)
class BulkOperationResult:
    """Outcome of one bulk mutation; some ids may fail while others succeed."""

    success: bool
    processed_count: int
    errors: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "BulkOperationResult":
        return cls(success=True, processed_count=0)


@dataclass(slots=True)
class MailLabel:
    id: str
    name: str
    type: str = "user"


@dataclass(slots=True)
class MailboxCounts:
    total: int
    unread: int
