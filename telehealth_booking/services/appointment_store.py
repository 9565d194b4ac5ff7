"""
Supabase-backed stores used by the booking engine.

- AppointmentStore: the durable appointment record
- ConfigStore: small key/value table holding the provisioned calendar id
- ProfileStore: caller role lookup

All calls are bounded by STORE_TIMEOUT_SECONDS and every failure surfaces as
StoreError. Appointment rows are never deleted here.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..exceptions import StoreError
from ..scheduling.clock import to_iso
from .external_timeouts import STORE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

APPOINTMENTS_TABLE = "appointments"
CONFIG_TABLE = "app_config"
PROFILES_TABLE = "profiles"

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


async def _execute(query, description: str):
    try:
        return await asyncio.wait_for(query.execute(), timeout=STORE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as e:
        logger.error(f"Store call timed out: {description}")
        raise StoreError(f"Timed out: {description}") from e
    except Exception as e:
        logger.exception(f"Store call failed: {description}: {e}")
        raise StoreError(f"Failed to {description}: {e}") from e


class AppointmentStore:
    """Reads and writes rows of the appointments table."""

    def __init__(self, client):
        self.client = client

    def _table(self):
        return self.client.table(APPOINTMENTS_TABLE)

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        result = await _execute(self._table().insert(row), "insert appointment")
        if not result.data:
            raise StoreError("Insert returned no appointment row")
        return result.data[0]

    async def get(self, appointment_id: str) -> Optional[Dict[str, Any]]:
        result = await _execute(
            self._table().select("*").eq("id", appointment_id).limit(1),
            f"load appointment {appointment_id}",
        )
        return result.data[0] if result.data else None

    async def update(
        self,
        appointment_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Update one appointment row.

        With expected_status the write only applies while the row still has
        that status; None is returned when it no longer does.

        Raises:
            StoreError: If the call fails or, without expected_status, no row matched
        """
        query = self._table().update(fields).eq("id", appointment_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)

        result = await _execute(query, f"update appointment {appointment_id}")
        if not result.data:
            if expected_status is not None:
                return None
            raise StoreError(f"Update of appointment {appointment_id} matched no row")
        return result.data[0]

    async def list(
        self,
        owner_id: Optional[str] = None,
        status: Optional[str] = None,
        upcoming_from: Optional[datetime] = None,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> List[Dict[str, Any]]:
        """
        List appointments ordered by start time.

        Args:
            owner_id: Restrict to rows created by this user; None lists every row
            status: Optional status filter
            upcoming_from: Only rows starting at or after this instant
            limit: Maximum rows, capped at MAX_LIST_LIMIT
        """
        query = self._table().select("*")
        if owner_id:
            query = query.eq("user_id", owner_id)
        if status:
            query = query.eq("status", status)
        if upcoming_from:
            query = query.gte("start_time", to_iso(upcoming_from))

        limit = max(1, min(limit, MAX_LIST_LIMIT))
        query = query.order("start_time").limit(limit)

        result = await _execute(query, "list appointments")
        return result.data or []


class ConfigStore:
    """Key/value access to the app_config table."""

    def __init__(self, client):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        result = await _execute(
            self.client.table(CONFIG_TABLE).select("value").eq("key", key).limit(1),
            f"read config {key}",
        )
        if not result.data:
            return None
        return result.data[0].get("value")

    async def set(self, key: str, value: str) -> None:
        await _execute(
            self.client.table(CONFIG_TABLE).upsert({"key": key, "value": value}, on_conflict="key"),
            f"write config {key}",
        )
        logger.info(f"Stored config {key}")


class ProfileStore:
    def __init__(self, client):
        self.client = client

    async def get_role(self, user_id: str) -> Optional[str]:
        result = await _execute(
            self.client.table(PROFILES_TABLE).select("role").eq("id", user_id).limit(1),
            f"load profile {user_id[:8]}",
        )
        if not result.data:
            return None
        return result.data[0].get("role")
