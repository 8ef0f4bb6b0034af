"""
Unit tests for streamvault/core/security.py and the bearer-token dependency.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from streamvault.api.dependencies import get_current_owner
from streamvault.core.config import settings
from streamvault.core.security import OWNER_ID_MAX_LENGTH, create_access_token, owner_from_token, verify_token


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def raw_token(**claims) -> str:
    claims.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=5))
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class TestTokens:
    @pytest.mark.unit
    def test_claims_survive_verification(self):
        token = create_access_token("owner-123", scope="media")

        payload = verify_token(token)

        assert payload["sub"] == "owner-123"
        assert payload["type"] == "access"
        assert payload["scope"] == "media"
        assert payload["exp"] > payload["iat"]

    @pytest.mark.unit
    def test_extra_claims_cannot_override_subject(self):
        token = create_access_token("owner-123", sub="someone-else")

        assert owner_from_token(token) == "owner-123"

    @pytest.mark.unit
    def test_expired_token_rejected(self):
        token = create_access_token("owner-123", expires_delta=timedelta(seconds=-1))

        assert verify_token(token) is None

    @pytest.mark.unit
    def test_wrong_type_rejected(self):
        token = create_access_token("owner-123")

        assert verify_token(token, token_type="refresh") is None

    @pytest.mark.unit
    def test_foreign_signature_rejected(self):
        token = jwt.encode({"sub": "owner-123", "type": "access"}, "other-secret", algorithm="HS256")

        assert verify_token(token) is None

    @pytest.mark.unit
    def test_garbage_rejected(self):
        assert verify_token("not.a.token") is None


class TestOwnerFromToken:
    @pytest.mark.unit
    @pytest.mark.parametrize("sub", [None, "", "   ", 42])
    def test_unusable_subject(self, sub):
        claims = {"type": "access"}
        if sub is not None:
            claims["sub"] = sub

        assert owner_from_token(raw_token(**claims)) is None

    @pytest.mark.unit
    def test_subject_longer_than_owner_column_rejected(self):
        assert owner_from_token(create_access_token("o" * OWNER_ID_MAX_LENGTH)) == "o" * OWNER_ID_MAX_LENGTH
        assert owner_from_token(create_access_token("o" * (OWNER_ID_MAX_LENGTH + 1))) is None


class TestCurrentOwner:
    @pytest.mark.unit
    def test_sub_is_owner_id(self):
        token = create_access_token("opaque-owner")

        assert get_current_owner(bearer(token)) == "opaque-owner"

    @pytest.mark.unit
    def test_invalid_token_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_owner(bearer("invalid"))

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    @pytest.mark.unit
    def test_missing_sub_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_owner(bearer(raw_token(type="access", scope="media")))

        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    def test_overlong_sub_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_owner(bearer(create_access_token("x" * (OWNER_ID_MAX_LENGTH + 1))))

        assert exc_info.value.status_code == 401
