import pytest
from fastapi.testclient import TestClient

from inbox_automation.main import app
from inbox_automation.routes.dependencies import get_components, get_mailbox


@pytest.fixture
def api_client(components, apply_auth_override, provider):
    """
    TestClient with an authenticated caller, in-memory store and a fake mail
    provider behind the shared cache and resilience service.
    """
    apply_auth_override(app)
    app.dependency_overrides[get_components] = lambda: components
    app.dependency_overrides[get_mailbox] = lambda: components.mailbox_for("user-123", provider)

    yield TestClient(app)

    app.dependency_overrides.clear()
