"""
Tests for the Zoom video gateway
"""

import json

import httpx
import pytest

from telehealth_booking.exceptions import CredentialError, VideoError
from telehealth_booking.video.zoom import ZoomVideoGateway

from .fixtures import MONDAY_10AM, StaticCredentials


class FailingCredentials(StaticCredentials):
    async def get_access_token(self) -> str:
        raise CredentialError("zoom", "token exchange failed (401): invalid_client")


def gateway_with(handler, credentials=None):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ZoomVideoGateway(credentials or StaticCredentials(), http_client), http_client


class TestCreateMeeting:
    async def test_creates_scheduled_meeting(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={
                "id": 81234567890,
                "join_url": "https://zoom.us/j/81234567890",
                "password": "x1y2z3",
            })

        gateway, http_client = gateway_with(handler)
        async with http_client:
            meeting = await gateway.create_meeting("Telehealth Consult - Jane Doe", MONDAY_10AM, 30)

        assert meeting.id == "81234567890"
        assert meeting.join_url == "https://zoom.us/j/81234567890"
        assert meeting.passcode == "x1y2z3"

        request = requests[0]
        assert str(request.url) == "https://api.zoom.us/v2/users/me/meetings"
        assert request.headers["authorization"] == "Bearer test-token"
        body = json.loads(request.content)
        assert body["type"] == 2
        assert body["start_time"] == "2030-01-07T10:00:00"
        assert body["timezone"] == "America/Chicago"
        assert body["duration"] == 30
        assert body["settings"]["waiting_room"] is True
        assert body["settings"]["mute_upon_entry"] is True
        assert body["settings"]["approval_type"] == 0

    async def test_error_response_raises_video_error(self):
        gateway, http_client = gateway_with(lambda request: httpx.Response(400, json={"code": 300, "message": "Invalid"}))
        async with http_client:
            with pytest.raises(VideoError) as exc_info:
                await gateway.create_meeting("Consult", MONDAY_10AM)

        assert "400" in exc_info.value.message

    async def test_credential_failure_raises_video_error(self):
        gateway, http_client = gateway_with(lambda request: httpx.Response(201, json={}), FailingCredentials())
        async with http_client:
            with pytest.raises(VideoError) as exc_info:
                await gateway.create_meeting("Consult", MONDAY_10AM)

        assert "invalid_client" in exc_info.value.message

    async def test_unconfigured_gateway_raises_video_error(self):
        async with httpx.AsyncClient() as http_client:
            gateway = ZoomVideoGateway(None, http_client)
            with pytest.raises(VideoError):
                await gateway.create_meeting("Consult", MONDAY_10AM)

    async def test_transport_error_raises_video_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gateway, http_client = gateway_with(handler)
        async with http_client:
            with pytest.raises(VideoError):
                await gateway.create_meeting("Consult", MONDAY_10AM)

    async def test_unauthorized_invalidates_token(self):
        credentials = StaticCredentials()
        gateway, http_client = gateway_with(lambda request: httpx.Response(401, json={"code": 124}), credentials)
        async with http_client:
            with pytest.raises(VideoError):
                await gateway.create_meeting("Consult", MONDAY_10AM)

        assert credentials.invalidated == 1

    async def test_success_without_meeting_fields_raises_video_error(self):
        gateway, http_client = gateway_with(lambda request: httpx.Response(201, json={"uuid": "x"}))
        async with http_client:
            with pytest.raises(VideoError) as exc_info:
                await gateway.create_meeting("Consult", MONDAY_10AM)

        assert "malformed" in exc_info.value.message

    async def test_success_with_non_json_body_raises_video_error(self):
        gateway, http_client = gateway_with(lambda request: httpx.Response(201, text="<html>gateway</html>"))
        async with http_client:
            with pytest.raises(VideoError):
                await gateway.create_meeting("Consult", MONDAY_10AM)


class TestDeleteMeeting:
    async def test_delete(self):
        def handler(request):
            assert request.method == "DELETE"
            if request.url.path.endswith("/meetings/1"):
                return httpx.Response(204)
            return httpx.Response(404, json={"code": 3001})

        gateway, http_client = gateway_with(handler)
        async with http_client:
            assert await gateway.delete_meeting("1") is True
            assert await gateway.delete_meeting("2") is False
