import asyncio
from datetime import timedelta

import httpx
import pytest
from jose import jwt

from app.chat.services.identity_resolver import IdentityResolver, is_admin_email
from app.core.config import Settings, settings
from app.core.exceptions import IdentityTimeoutError, UnauthorizedError
from tests.utils.factories import create_identity
from tests.utils.helpers import create_token


def remote_settings(**overrides) -> Settings:
    values = {
        "AUTH_MODE": "remote",
        "IDENTITY_PROVIDER_URL": "https://identity.test",
        "IDENTITY_PROVIDER_API_KEY": "anon-key",
        "IDENTITY_VERIFY_TIMEOUT_SECONDS": 0.2,
        **overrides,
    }
    return settings.model_copy(update=values)


class TestIsAdminEmail:
    def test_should_match_case_insensitively(self):
        assert is_admin_email("Support@EduFund.test ", "support@edufund.test")

    def test_should_reject_other_and_empty_emails(self):
        assert not is_admin_email("someone@edufund.test", "support@edufund.test")
        assert not is_admin_email("", "support@edufund.test")


class TestJwtMode:
    @pytest.mark.asyncio
    async def test_should_resolve_identity_from_signed_token(self):
        identity = create_identity()
        resolver = IdentityResolver(settings)

        resolved = await resolver.resolve(create_token(identity))

        assert resolved.id == identity.id
        assert resolved.email == identity.email
        assert resolved.is_admin is False

    @pytest.mark.asyncio
    async def test_should_flag_admin_by_email(self):
        admin = create_identity(email=settings.ADMIN_EMAIL.upper())
        resolver = IdentityResolver(settings)

        resolved = await resolver.resolve(create_token(admin))

        assert resolved.is_admin is True

    @pytest.mark.asyncio
    async def test_should_reject_missing_token(self):
        resolver = IdentityResolver(settings)

        with pytest.raises(UnauthorizedError, match="No token provided"):
            await resolver.resolve(None)

    @pytest.mark.asyncio
    async def test_should_reject_bad_signature(self):
        identity = create_identity()
        token = jwt.encode(
            {"sub": identity.id, "email": identity.email}, "another-secret", algorithm="HS256"
        )

        with pytest.raises(UnauthorizedError):
            await IdentityResolver(settings).resolve(token)

    @pytest.mark.asyncio
    async def test_should_reject_expired_token(self):
        token = create_token(create_identity(), expires_in=timedelta(minutes=-1))

        with pytest.raises(UnauthorizedError):
            await IdentityResolver(settings).resolve(token)

    @pytest.mark.asyncio
    async def test_should_reject_token_without_email(self):
        token = jwt.encode({"sub": "user-1"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

        with pytest.raises(UnauthorizedError, match="Invalid token"):
            await IdentityResolver(settings).resolve(token)

    @pytest.mark.asyncio
    async def test_should_check_audience_when_configured(self):
        identity = create_identity()
        config = settings.model_copy(update={"JWT_AUDIENCE": "authenticated"})
        resolver = IdentityResolver(config)

        accepted = await resolver.resolve(create_token(identity, aud="authenticated"))
        assert accepted.id == identity.id

        with pytest.raises(UnauthorizedError):
            await resolver.resolve(create_token(identity, aud="someone-else"))


class TestRemoteMode:
    @pytest.mark.asyncio
    async def test_should_ask_provider_with_token_and_api_key(self):
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["authorization"] = request.headers["Authorization"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json={"id": "user-42", "email": "user42@edufund.test"})

        resolver = IdentityResolver(remote_settings(), transport=httpx.MockTransport(handler))

        identity = await resolver.resolve("opaque-token")

        assert identity.id == "user-42"
        assert identity.email == "user42@edufund.test"
        assert seen["url"] == "https://identity.test/auth/v1/user"
        assert seen["authorization"] == "Bearer opaque-token"
        assert seen["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_should_reject_when_provider_says_no(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"msg": "bad jwt"}))
        resolver = IdentityResolver(remote_settings(), transport=transport)

        with pytest.raises(UnauthorizedError, match="Invalid token"):
            await resolver.resolve("opaque-token")

    @pytest.mark.asyncio
    async def test_should_raise_timeout_when_provider_is_slow(self):
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json={"id": "late", "email": "late@edufund.test"})

        resolver = IdentityResolver(remote_settings(), transport=httpx.MockTransport(slow))

        with pytest.raises(IdentityTimeoutError) as exc_info:
            await resolver.resolve("opaque-token")

        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == "AUTH_TIMEOUT"

    @pytest.mark.asyncio
    async def test_should_reject_when_provider_unreachable(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        resolver = IdentityResolver(remote_settings(), transport=httpx.MockTransport(refuse))

        with pytest.raises(UnauthorizedError, match="Could not verify token"):
            await resolver.resolve("opaque-token")


class TestInsecureDecodeMode:
    @pytest.mark.asyncio
    async def test_should_read_claims_without_verifying(self):
        token = jwt.encode({"sub": "dev-user", "email": "dev@edufund.test"}, "whatever", algorithm="HS256")
        config = settings.model_copy(update={"AUTH_MODE": "insecure_decode"})

        identity = await IdentityResolver(config).resolve(token)

        assert identity.id == "dev-user"

    @pytest.mark.asyncio
    async def test_should_reject_garbage(self):
        config = settings.model_copy(update={"AUTH_MODE": "insecure_decode"})

        with pytest.raises(UnauthorizedError):
            await IdentityResolver(config).resolve("not-a-jwt")

    def test_should_be_refused_in_production(self):
        with pytest.raises(ValueError, match="not allowed in production"):
            Settings(
                DATABASE_URL="sqlite://",
                ENVIRONMENT="production",
                AUTH_MODE="insecure_decode",
            )
