from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from inbox_automation.auth import verify


def test_verify_jwt_rejects_bad_token():
    jwk_client = MagicMock()
    jwk_client.get_signing_key_from_jwt.side_effect = Exception("no matching key")

    with patch.object(verify, "_get_jwk_client", return_value=jwk_client):
        with pytest.raises(HTTPException) as exc_info:
            verify.verify_jwt("not-a-jwt")

    assert exc_info.value.status_code == 401
    assert "no matching key" in exc_info.value.detail


def test_verify_jwt_decodes_with_supabase_audience():
    jwk_client = MagicMock()
    jwk_client.get_signing_key_from_jwt.return_value.key = "public-key"

    with (
        patch.object(verify, "_get_jwk_client", return_value=jwk_client),
        patch.object(verify.jwt, "decode", return_value={"sub": "user-123"}) as decode,
    ):
        claims = verify.verify_jwt("token")

    assert claims == {"sub": "user-123"}
    assert decode.call_args.kwargs["audience"] == "authenticated"
    assert decode.call_args.kwargs["algorithms"] == ["ES256"]


def test_get_owner_id_returns_subject():
    assert verify.get_owner_id({"sub": "user-123"}) == "user-123"


def test_get_owner_id_requires_subject():
    with pytest.raises(HTTPException) as exc_info:
        verify.get_owner_id({"role": "authenticated"})

    assert exc_info.value.status_code == 401
