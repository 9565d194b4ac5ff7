"""
Zoom video gateway.

Creates scheduled meetings for booked appointments. Every failure surfaces as
VideoError so the booking saga can treat meeting creation as best-effort.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx

from ..config import APPOINTMENT_DURATION_MIN
from ..exceptions import CredentialError, VideoError
from ..services.credential_manager import ZoomCredentials
from ..services.external_timeouts import VIDEO_TIMEOUT

logger = logging.getLogger(__name__)

ZOOM_API_BASE = "https://api.zoom.us/v2"
SCHEDULED_MEETING = 2

MEETING_SETTINGS = {
    "host_video": True,
    "participant_video": True,
    "join_before_host": False,
    "waiting_room": True,
    "audio": "both",
    "auto_recording": "none",
    "mute_upon_entry": True,
    "approval_type": 0,  # automatically approve
}


@dataclass(frozen=True)
class Meeting:
    id: str
    join_url: str
    passcode: str = ""


class ZoomVideoGateway:
    """
    Thin client over the Zoom meetings API.

    Args:
        credentials: Zoom Server-to-Server OAuth manager
        http_client: Shared async HTTP client
        tz_name: Timezone reported to Zoom for the meeting
    """

    def __init__(
        self,
        credentials: Optional[ZoomCredentials],
        http_client: httpx.AsyncClient,
        tz_name: str = "America/Chicago"
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.tz_name = tz_name

    async def _authorized_request(self, method: str, path: str, action: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        if self.credentials is None:
            raise VideoError("Zoom is not configured")

        try:
            token = await self.credentials.get_access_token()
        except CredentialError as e:
            raise VideoError(f"Failed to {action}: {e.message}") from e

        try:
            response = await self.http_client.request(
                method,
                f"{ZOOM_API_BASE}{path}",
                json=json,
                headers={"Authorization": f"Bearer {token}"},
                timeout=VIDEO_TIMEOUT,
            )
        except httpx.HTTPError as e:
            raise VideoError(f"Failed to {action}: {type(e).__name__}") from e

        if response.status_code == 401:
            self.credentials.invalidate()

        return response

    async def create_meeting(
        self,
        topic: str,
        start: datetime,
        duration_minutes: int = APPOINTMENT_DURATION_MIN,
        agenda: Optional[str] = None
    ) -> Meeting:
        """
        Create a scheduled meeting.

        Raises:
            VideoError: On missing credentials, transport failure or a non-2xx response
        """
        local_start = start.astimezone(ZoneInfo(self.tz_name))
        body: Dict[str, Any] = {
            "topic": topic,
            "type": SCHEDULED_MEETING,
            "start_time": local_start.strftime("%Y-%m-%dT%H:%M:%S"),
            "duration": duration_minutes,
            "timezone": self.tz_name,
            "settings": MEETING_SETTINGS,
        }
        if agenda:
            body["agenda"] = agenda

        response = await self._authorized_request("POST", "/users/me/meetings", "create meeting", json=body)
        if not response.is_success:
            logger.error(f"[Zoom] Meeting creation failed ({response.status_code}): {response.text}")
            raise VideoError(f"Failed to create Zoom meeting: {response.status_code} {response.text}")

        try:
            data = response.json()
            meeting = Meeting(
                id=str(data["id"]),
                join_url=data["join_url"],
                passcode=data.get("password") or "",
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[Zoom] Unexpected meeting response: {response.text}")
            raise VideoError(f"Failed to create Zoom meeting: malformed response ({type(e).__name__})") from e

        logger.info(f"[Zoom] Created meeting {meeting.id} for {local_start.isoformat()}")
        return meeting

    async def delete_meeting(self, meeting_id: str) -> bool:
        """
        Delete a meeting that is no longer needed.

        Returns:
            False if the meeting was already gone
        """
        response = await self._authorized_request("DELETE", f"/meetings/{meeting_id}", "delete meeting")
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise VideoError(f"Failed to delete Zoom meeting {meeting_id}: {response.status_code}")

        logger.info(f"[Zoom] Deleted meeting {meeting_id}")
        return True
