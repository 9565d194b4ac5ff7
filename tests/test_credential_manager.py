"""
Tests for the Google and Zoom credential managers
"""

import asyncio
import base64
import json
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from telehealth_booking.exceptions import CredentialError
from telehealth_booking.services.credential_manager import (
    GOOGLE_CALENDAR_SCOPE,
    GOOGLE_TOKEN_URL,
    JWT_BEARER_GRANT,
    CredentialManager,
    GoogleServiceAccountCredentials,
    ZoomCredentials,
)


class FakeClock:
    def __init__(self, now: float = 1_900_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def service_account_info(rsa_key):
    pem = rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    return {
        "client_email": "booking@test-project.iam.gserviceaccount.com",
        "private_key": pem,
        "private_key_id": "key-1",
    }


def token_transport(requests, responses):
    """MockTransport replaying `responses` in order and recording requests."""
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = responses[min(len(requests), len(responses)) - 1]
        return httpx.Response(status, json=body)
    return httpx.MockTransport(handler)


class TestGoogleServiceAccountCredentials:
    async def test_exchanges_signed_assertion(self, service_account_info, rsa_key):
        requests = []
        clock = FakeClock()
        async with httpx.AsyncClient(transport=token_transport(requests, [(200, {"access_token": "g-1", "expires_in": 3600})])) as client:
            creds = GoogleServiceAccountCredentials(service_account_info, client, clock=clock)

            token = await creds.get_access_token()

        assert token == "g-1"
        assert len(requests) == 1
        assert str(requests[0].url) == GOOGLE_TOKEN_URL

        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == [JWT_BEARER_GRANT]

        assertion = form["assertion"][0]
        assert jwt.get_unverified_header(assertion)["kid"] == "key-1"
        # iat comes from the fake clock, so skip time-based claim checks
        claims = jwt.decode(
            assertion,
            rsa_key.public_key(),
            algorithms=["RS256"],
            audience=GOOGLE_TOKEN_URL,
            options={"verify_iat": False, "verify_exp": False, "verify_nbf": False},
        )
        assert claims["iss"] == service_account_info["client_email"]
        assert claims["scope"] == GOOGLE_CALENDAR_SCOPE
        assert claims["exp"] - claims["iat"] == 3600
        assert claims["iat"] == int(clock.now)

    async def test_token_cached_until_safety_margin(self, service_account_info):
        requests = []
        clock = FakeClock()
        responses = [(200, {"access_token": "g-1", "expires_in": 3600}), (200, {"access_token": "g-2", "expires_in": 3600})]
        async with httpx.AsyncClient(transport=token_transport(requests, responses)) as client:
            creds = GoogleServiceAccountCredentials(service_account_info, client, clock=clock)

            assert await creds.get_access_token() == "g-1"
            clock.now += 3600 - 61
            assert await creds.get_access_token() == "g-1"
            assert len(requests) == 1

            clock.now += 1  # exactly expires_at - 60
            assert await creds.get_access_token() == "g-2"
            assert len(requests) == 2

    async def test_concurrent_callers_share_one_exchange(self, service_account_info):
        requests = []
        async with httpx.AsyncClient(transport=token_transport(requests, [(200, {"access_token": "g-1", "expires_in": 3600})])) as client:
            creds = GoogleServiceAccountCredentials(service_account_info, client, clock=FakeClock())

            tokens = await asyncio.gather(*(creds.get_access_token() for _ in range(5)))

        assert tokens == ["g-1"] * 5
        assert len(requests) == 1

    async def test_rejected_exchange_raises_and_is_retried_next_call(self, service_account_info):
        requests = []
        responses = [(400, {"error": "invalid_grant"}), (200, {"access_token": "g-2", "expires_in": 3600})]
        async with httpx.AsyncClient(transport=token_transport(requests, responses)) as client:
            creds = GoogleServiceAccountCredentials(service_account_info, client, clock=FakeClock())

            with pytest.raises(CredentialError) as exc_info:
                await creds.get_access_token()
            assert exc_info.value.provider == "google"
            assert "invalid_grant" in exc_info.value.message

            assert await creds.get_access_token() == "g-2"

    async def test_missing_service_account_raises(self):
        async with httpx.AsyncClient(transport=token_transport([], [(200, {})])) as client:
            creds = GoogleServiceAccountCredentials({}, client)

            with pytest.raises(CredentialError):
                await creds.get_access_token()

    async def test_invalidate_forces_new_exchange(self, service_account_info):
        requests = []
        responses = [(200, {"access_token": "g-1", "expires_in": 3600}), (200, {"access_token": "g-2", "expires_in": 3600})]
        async with httpx.AsyncClient(transport=token_transport(requests, responses)) as client:
            creds = GoogleServiceAccountCredentials(service_account_info, client, clock=FakeClock())

            await creds.get_access_token()
            creds.invalidate()

            assert await creds.get_access_token() == "g-2"


class TestZoomCredentials:
    async def test_basic_auth_account_credentials_grant(self):
        requests = []
        async with httpx.AsyncClient(transport=token_transport(requests, [(200, {"access_token": "z-1", "expires_in": 3599})])) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client, clock=FakeClock())

            assert await creds.get_access_token() == "z-1"

        request = requests[0]
        assert request.method == "POST"
        assert request.url.host == "zoom.us"
        assert request.url.params["grant_type"] == "account_credentials"
        assert request.url.params["account_id"] == "acct-1"
        expected = base64.b64encode(b"client-id:client-secret").decode()
        assert request.headers["authorization"] == f"Basic {expected}"

    async def test_default_expiry_is_one_hour(self):
        requests = []
        clock = FakeClock()
        responses = [(200, {"access_token": "z-1"}), (200, {"access_token": "z-2"})]
        async with httpx.AsyncClient(transport=token_transport(requests, responses)) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client, clock=clock)

            await creds.get_access_token()
            clock.now += 3600 - 61
            assert await creds.get_access_token() == "z-1"
            clock.now += 1
            assert await creds.get_access_token() == "z-2"

    async def test_missing_access_token_raises(self):
        async with httpx.AsyncClient(transport=token_transport([], [(200, {"token_type": "bearer"})])) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client)

            with pytest.raises(CredentialError):
                await creds.get_access_token()

    async def test_missing_credentials_raise_without_request(self):
        requests = []
        async with httpx.AsyncClient(transport=token_transport(requests, [(200, {})])) as client:
            creds = ZoomCredentials("", "", "", client)

            with pytest.raises(CredentialError) as exc_info:
                await creds.get_access_token()

        assert "ZOOM_ACCOUNT_ID" in exc_info.value.message
        assert requests == []

    async def test_transport_error_becomes_credential_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client)

            with pytest.raises(CredentialError) as exc_info:
                await creds.get_access_token()

        assert "ConnectTimeout" in exc_info.value.message

    async def test_non_json_token_response_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        async with httpx.AsyncClient(transport=transport) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client)

            with pytest.raises(CredentialError) as exc_info:
                await creds.get_access_token()

        assert exc_info.value.provider == "zoom"
        assert "not JSON" in exc_info.value.message

    async def test_non_object_token_response_raises(self):
        async with httpx.AsyncClient(transport=token_transport([], [(200, ["z-1"])])) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client)

            with pytest.raises(CredentialError):
                await creds.get_access_token()

    async def test_invalid_expires_in_raises(self):
        responses = [(200, {"access_token": "z-1", "expires_in": "soon"})]
        async with httpx.AsyncClient(transport=token_transport([], responses)) as client:
            creds = ZoomCredentials("acct-1", "client-id", "client-secret", client)

            with pytest.raises(CredentialError) as exc_info:
                await creds.get_access_token()

        assert "expires_in" in exc_info.value.message


class TestCredentialManager:
    async def test_base_class_cannot_be_instantiated(self):
        async with httpx.AsyncClient() as client:
            with pytest.raises(TypeError):
                CredentialManager(client)


def test_service_account_json_round_trip(service_account_info):
    from telehealth_booking.config import Settings

    settings = Settings(_env_file=None, GOOGLE_SERVICE_ACCOUNT_JSON=json.dumps(service_account_info))
    assert settings.service_account_info["client_email"] == service_account_info["client_email"]
