"""Test request tracking and JWT authentication."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi import Request, Response
from jose import jwt

from movie_reviews.config import settings
from movie_reviews.exceptions import AuthenticationError
from movie_reviews.middleware import (
    add_request_id,
    create_token,
    decode_token,
    get_current_identity,
)
from movie_reviews.types import Identity


def make_request(headers: dict[str, str]) -> Mock:
    request = Mock(spec=Request)
    request.headers = Mock()
    request.headers.get = lambda key, default=None: headers.get(key, default)
    request.state = SimpleNamespace()
    request.method = "GET"
    request.url = Mock(path="/test")
    request.client = None
    return request


async def mock_call_next(request):
    response = Mock(spec=Response)
    response.headers = {}
    response.status_code = 200
    return response


class TestRequestIDMiddleware:
    """Test request ID middleware."""

    @pytest.mark.asyncio
    async def test_preserves_existing_header(self):
        request = make_request({"X-Request-ID": "existing-id-123"})

        response = await add_request_id(request, mock_call_next)

        assert request.state.request_id == "existing-id-123"
        assert response.headers["X-Request-ID"] == "existing-id-123"

    @pytest.mark.asyncio
    async def test_generates_new_id(self):
        request = make_request({})

        with patch("movie_reviews.middleware.uuid.uuid4", return_value="generated-uuid"):
            response = await add_request_id(request, mock_call_next)

        assert request.state.request_id == "generated-uuid"
        assert response.headers["X-Request-ID"] == "generated-uuid"


class TestTokens:
    """Test JWT creation and validation."""

    def test_round_trip_subject(self):
        token = create_token("user-1")

        assert decode_token(f"Bearer {token}") == "user-1"

    def test_token_carries_no_role(self):
        payload = jwt.decode(
            create_token("user-1"), settings.secret_key, algorithms=[settings.jwt_algorithm]
        )

        assert "role" not in payload
        assert payload["sub"] == "user-1"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "bearer abc"])
    def test_missing_or_malformed_header(self, header):
        with pytest.raises(AuthenticationError, match="No token"):
            decode_token(header)

    def test_invalid_signature(self):
        token = jwt.encode({"sub": "user-1"}, "another-secret", algorithm="HS256")

        with pytest.raises(AuthenticationError, match="Token is not valid"):
            decode_token(f"Bearer {token}")

    def test_expired_token(self):
        token = jwt.encode(
            {"sub": "user-1", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(AuthenticationError, match="Token is not valid"):
            decode_token(f"Bearer {token}")

    def test_token_without_subject(self):
        token = jwt.encode({"foo": "bar"}, settings.secret_key, algorithm=settings.jwt_algorithm)

        with pytest.raises(AuthenticationError):
            decode_token(f"Bearer {token}")


class TestCurrentIdentity:
    """Test identity resolution from the store."""

    @pytest.mark.asyncio
    async def test_resolves_through_accounts(self):
        accounts = Mock()
        accounts.resolve_identity = AsyncMock(return_value=Identity("user-1", "admin"))
        request = Mock()
        request.app.state.services.accounts = accounts
        request.state = SimpleNamespace()

        identity = await get_current_identity(request, f"Bearer {create_token('user-1')}")

        assert identity == Identity("user-1", "admin")
        assert request.state.identity is identity
        accounts.resolve_identity.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_missing_token_never_touches_store(self):
        request = Mock()
        request.app.state.services.accounts.resolve_identity = AsyncMock()

        with pytest.raises(AuthenticationError):
            await get_current_identity(request, None)

        request.app.state.services.accounts.resolve_identity.assert_not_awaited()
