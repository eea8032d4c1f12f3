"""
Google Gmail API client used as the mail-provider collaborator.
Handles raw REST calls, error mapping and response parsing into MailMessage
records. Retries are NOT done here: every call is wrapped by the resilience
service one layer up.
"""

import asyncio
import base64
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from inbox_automation.config import settings
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.domain.mail_domain import (
    BulkOperationResult,
    MailboxCounts,
    MailLabel,
    MailMessage,
)

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"  # User's Gmail account

MAX_PAGE_SIZE = 500  # Gmail API limit for messages.list
TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}

# Lower-cased error.errors[].reason values, shared with the error classifier
RATE_LIMIT_REASONS = {"ratelimitexceeded", "userratelimitexceeded"}
QUOTA_REASONS = {"quotaexceeded", "dailylimitexceeded"}
PERMISSION_REASONS = {"insufficientpermissions", "forbidden"}
BACKEND_REASONS = {"backenderror"}


class GoogleGmailError(Exception):
    """Custom exception for Google Gmail API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}
        self.retry_after = retry_after

    @property
    def reasons(self) -> list[str]:
        """The ``error.errors[].reason`` values from the API error body."""
        error_info = self.response_data.get("error", {})
        if not isinstance(error_info, dict):
            return []
        return [item.get("reason", "") for item in error_info.get("errors", []) if isinstance(item, dict)]

    @property
    def affects_whole_call(self) -> bool:
        """
        True when the failure concerns the account, the token or the API rather
        than one message. Bulk operations re-raise these so the whole call is
        classified and retried; only 400/404-style errors stay per-id failures.
        """
        if self.error_code == "network_error":
            return True
        if self.status_code in TRANSIENT_STATUS_CODES or self.status_code == 401:
            return True

        reasons = {reason.lower() for reason in self.reasons}
        if reasons & (RATE_LIMIT_REASONS | QUOTA_REASONS | BACKEND_REASONS):
            return True
        if self.status_code == 403:
            return bool(reasons & PERMISSION_REASONS) or "quota" in str(self).lower()
        return False


def _parse_retry_after(value: str | None) -> float | None:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0.0, (retry_at - datetime.now(UTC)).total_seconds())


def _decode_body(data: str | None) -> str:
    if not data:
        return ""
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (ValueError, UnicodeDecodeError):
        return ""


def _walk_parts(payload: dict):
    yield payload
    for part in payload.get("parts", []) or []:
        yield from _walk_parts(part)


def parse_gmail_message(data: dict) -> MailMessage:
    """Build a MailMessage from a messages.get (format=full) response."""
    payload = data.get("payload", {}) or {}
    headers = {
        header.get("name", "").lower(): header.get("value", "")
        for header in payload.get("headers", []) or []
    }

    date = None
    if headers.get("date"):
        try:
            date = parsedate_to_datetime(headers["date"])
        except (TypeError, ValueError):
            date = None
    if date is None and data.get("internalDate"):
        date = datetime.fromtimestamp(int(data["internalDate"]) / 1000, tz=UTC)

    body = ""
    has_attachment = False
    for part in _walk_parts(payload):
        if part.get("filename"):
            has_attachment = True
        elif not body and part.get("mimeType") == "text/plain":
            body = _decode_body((part.get("body") or {}).get("data"))

    return MailMessage(
        id=data["id"],
        thread_id=data.get("threadId"),
        sender=headers.get("from", ""),
        to=headers.get("to", ""),
        subject=headers.get("subject", ""),
        snippet=data.get("snippet", ""),
        body=body or data.get("snippet", ""),
        date=date,
        size_estimate=int(data.get("sizeEstimate", 0) or 0),
        has_attachment=has_attachment,
        label_ids=list(data.get("labelIds", []) or []),
        has_unsubscribe_header="list-unsubscribe" in headers,
    )


class GoogleGmailService:
    """
    Gmail REST client bound to one owner's OAuth access token.

    Pure API client: HTTP requests, error mapping and parsing. Bulk mutations
    loop per message id and report per-id failures; an account-wide error
    (quota, rate limit, token, server) is raised instead so the whole
    (idempotent) call can be classified and retried.
    """

    def __init__(self, access_token: str, timeout: float | None = None):
        self._access_token = access_token
        self._timeout = timeout or settings.GMAIL_REQUEST_TIMEOUT_SECONDS
        self._session = requests.Session()

    def _get_auth_headers(self) -> dict:
        """Get authorization headers for Gmail API requests."""
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: requests.Response, operation: str) -> dict:
        """
        Handle and validate Gmail API response.

        Raises:
            GoogleGmailError: If response contains errors
        """
        logger.debug(
            f"Gmail API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.ok:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise GoogleGmailError(f"Invalid response format: {e}") from e

        retry_after = _parse_retry_after(response.headers.get("Retry-After"))

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.warning(
                f"Gmail API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleGmailError(
                f"Gmail API error (HTTP {response.status_code})",
                status_code=response.status_code,
                retry_after=retry_after,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_message = error_info.get("message", "Unknown Gmail API error")

        logger.warning(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_message=error_message,
        )

        raise GoogleGmailError(
            error_message,
            error_code=str(error_info.get("code", response.status_code)),
            status_code=response.status_code,
            response_data=error_data,
            retry_after=retry_after,
        )

    def _request(self, method: str, path: str, operation: str, **kwargs) -> dict:
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/{path}"
        try:
            response = self._session.request(
                method, url, headers=self._get_auth_headers(), timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            raise GoogleGmailError(
                f"Gmail API {operation} request failed: {e}", error_code="network_error"
            ) from e
        return self._handle_api_response(response, operation)

    async def _call(self, method: str, path: str, operation: str, **kwargs) -> dict:
        return await asyncio.to_thread(self._request, method, path, operation, **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_messages(self, query: str, max_results: int) -> list[MailMessage]:
        """
        List messages matching a Gmail search query, newest first.

        Args:
            query: Gmail search query (e.g., "in:inbox older_than:90d")
            max_results: Maximum number of messages to return

        Returns:
            list[MailMessage]: Parsed messages

        Raises:
            GoogleGmailError: If listing or fetching a message fails
        """
        message_ids: list[str] = []
        page_token = None

        while len(message_ids) < max_results:
            params: dict[str, Any] = {
                "maxResults": min(max_results - len(message_ids), MAX_PAGE_SIZE),
                "q": query,
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._call("GET", "messages", "list_messages", params=params)
            message_ids.extend(msg["id"] for msg in data.get("messages", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        messages = []
        for message_id in message_ids[:max_results]:
            try:
                data = await self._call(
                    "GET", f"messages/{message_id}", "get_message", params={"format": "full"}
                )
            except GoogleGmailError as e:
                if e.affects_whole_call or e.status_code != 404:
                    raise
                # Deleted between list and get
                logger.info("Message vanished before fetch", message_id=message_id)
                continue
            messages.append(parse_gmail_message(data))

        logger.info("Messages listed", query=query, message_count=len(messages))
        return messages

    async def list_labels(self) -> list[MailLabel]:
        data = await self._call("GET", "labels", "list_labels")
        return [
            MailLabel(id=label["id"], name=label.get("name", label["id"]), type=label.get("type", "user"))
            for label in data.get("labels", [])
        ]

    async def get_mailbox_counts(self) -> MailboxCounts:
        data = await self._call("GET", "labels/INBOX", "get_mailbox_counts")
        return MailboxCounts(
            total=int(data.get("messagesTotal", 0) or 0),
            unread=int(data.get("messagesUnread", 0) or 0),
        )

    # ------------------------------------------------------------------
    # Bulk mutations
    # ------------------------------------------------------------------

    async def _for_each(self, ids: list[str], operation: str, call) -> BulkOperationResult:
        processed = 0
        errors: list[str] = []
        failed_ids: list[str] = []

        for message_id in ids:
            try:
                await call(message_id)
                processed += 1
            except GoogleGmailError as e:
                if e.affects_whole_call:
                    raise
                failed_ids.append(message_id)
                errors.append(f"Failed to {operation} email {message_id}: {e}")

        if errors:
            logger.warning(
                "Bulk operation finished with failures",
                operation=operation,
                processed_count=processed,
                failed_count=len(failed_ids),
            )

        return BulkOperationResult(
            success=not errors, processed_count=processed, errors=errors, failed_ids=failed_ids
        )

    async def _modify(
        self,
        ids: list[str],
        operation: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> BulkOperationResult:
        body: dict[str, list[str]] = {}
        if add_label_ids:
            body["addLabelIds"] = add_label_ids
        if remove_label_ids:
            body["removeLabelIds"] = remove_label_ids

        async def modify_one(message_id: str):
            await self._call("POST", f"messages/{message_id}/modify", operation, json=body)

        return await self._for_each(ids, operation, modify_one)

    async def archive(self, ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "archive", remove_label_ids=["INBOX"])

    async def delete(self, ids: list[str]) -> BulkOperationResult:
        async def trash_one(message_id: str):
            await self._call("POST", f"messages/{message_id}/trash", "delete")

        return await self._for_each(ids, "delete", trash_one)

    async def add_labels(self, ids: list[str], label_ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "label", add_label_ids=label_ids)

    async def mark_read(self, ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "mark_read", remove_label_ids=["UNREAD"])

    async def mark_unread(self, ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "mark_unread", add_label_ids=["UNREAD"])

    async def star(self, ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "star", add_label_ids=["STARRED"])

    async def unstar(self, ids: list[str]) -> BulkOperationResult:
        return await self._modify(ids, "unstar", remove_label_ids=["STARRED"])

    def close(self) -> None:
        self._session.close()
