"""
Shared FastAPI dependencies for the automation routes.
"""

from fastapi import Depends, Header, HTTPException, Request, status

from inbox_automation.auth.verify import get_owner_id
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.wiring import AutomationComponents


def get_components(request: Request) -> AutomationComponents:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Automation services not initialized",
        )
    return components


def get_mailbox(
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
    x_google_access_token: str | None = Header(default=None),
) -> MailboxService:
    """Mail-client handle for the caller, built from the forwarded Google access token."""
    if not x_google_access_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Google-Access-Token header is required",
        )
    return components.gmail_mailbox(owner_id, x_google_access_token)
