from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ibadah.config import DispatchConfig
from ibadah.messages import MessageBuilder
from ibadah.models import (
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    STATUS_SENT,
    NotificationPreferences,
    UserLineConnection,
)
from ibadah.prayer_times import Clock, PrayerTimeResolver, SystemClock, resolve_timezone
from ibadah.store import NotificationStore


BOOLEAN_FIELDS = (
    "prayer_fajr",
    "prayer_dhuhr",
    "prayer_asr",
    "prayer_maghrib",
    "prayer_isha",
    "adhkar_morning",
    "adhkar_evening",
    "daily_wisdom",
    "quran_reminder",
)

MAX_REMINDER_MINUTES = 60
MAX_LOCATION_NAME = 100


class AccountError(ValueError):
    """Raised for requests that cannot be honoured; carries the HTTP status."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def default_preferences(config: DispatchConfig) -> Dict[str, Any]:
    values: Dict[str, Any] = {name: True for name in BOOLEAN_FIELDS}
    values.update(
        prayer_reminder_minutes=config.default_reminder_minutes,
        latitude=DEFAULT_LATITUDE,
        longitude=DEFAULT_LONGITUDE,
        timezone=config.default_timezone,
        location_name=config.default_location_name,
    )
    return values


def preferences_to_dict(prefs: NotificationPreferences) -> Dict[str, Any]:
    values: Dict[str, Any] = {name: bool(getattr(prefs, name)) for name in BOOLEAN_FIELDS}
    values.update(
        prayer_reminder_minutes=prefs.prayer_reminder_minutes,
        latitude=float(prefs.latitude),
        longitude=float(prefs.longitude),
        timezone=prefs.timezone,
        location_name=prefs.location_name,
    )
    return values


def connection_to_dict(connection: UserLineConnection) -> Dict[str, Any]:
    return {
        "id": connection.id,
        "lineUserId": connection.line_user_id,
        "displayName": connection.display_name,
        "pictureUrl": connection.picture_url,
        "connectedAt": connection.connected_at.isoformat() if connection.connected_at else None,
    }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class AccountService:
    """Links and unlinks LINE accounts and manages notification preferences."""

    def __init__(
        self,
        *,
        store: NotificationStore,
        gateway: Any,
        messages: MessageBuilder,
        resolver: PrayerTimeResolver,
        config: DispatchConfig,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._messages = messages
        self._resolver = resolver
        self._config = config
        self._clock = clock or SystemClock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def get_connection(self, user_id: str) -> Optional[UserLineConnection]:
        return self._store.get_active_connection_for_user(user_id)

    def link(self, user_id: str, line_user_id: str) -> Tuple[UserLineConnection, bool]:
        """Returns the active connection and whether it already existed."""
        if not line_user_id:
            raise AccountError("lineUserId is required")

        owner = self._store.get_active_connection_for_line_user(line_user_id)
        if owner is not None and owner.user_id != user_id:
            raise AccountError("This LINE account is already linked to another user")

        current = self._store.get_active_connection_for_user(user_id)
        if current is not None:
            if current.line_user_id == line_user_id:
                return current, True
            # One active connection per user: the old LINE id is retired.
            self._store.deactivate_connection(current.id)
            self._logger.info(
                "Replaced LINE connection %s for user %s", current.line_user_id, user_id
            )

        profile = self._gateway.get_profile(line_user_id)
        connection = self._store.create_connection(
            user_id=user_id,
            line_user_id=line_user_id,
            display_name=profile.display_name if profile else None,
            picture_url=profile.picture_url if profile else None,
        )
        self._store.ensure_preferences(user_id, default_preferences(self._config))

        result = self._gateway.push_message(
            line_user_id, self._messages.account_linked(self._config.schedule)
        )
        if not result.success:
            self._logger.warning("Link confirmation to %s failed: %s", line_user_id, result.error)
        self._logger.info("Linked user %s to LINE %s", user_id, line_user_id)
        return connection, False

    def unlink(self, user_id: str) -> None:
        connection = self._store.get_active_connection_for_user(user_id)
        if connection is None:
            raise AccountError("No active LINE connection found", status_code=404)

        self._store.deactivate_connection(connection.id)

        # The user may have blocked the bot already; unlinking still succeeds.
        result = self._gateway.push_message(
            connection.line_user_id, self._messages.account_unlinked()
        )
        if not result.success:
            self._logger.warning(
                "Unlink notice to %s failed: %s", connection.line_user_id, result.error
            )

        self._store.add_log(
            user_id=user_id,
            line_user_id=connection.line_user_id,
            notification_type="account_unlink",
            message_content="User unlinked their LINE account",
            status=STATUS_SENT,
        )
        self._logger.info("Unlinked user %s from LINE %s", user_id, connection.line_user_id)

    def get_preferences(self, user_id: str) -> Tuple[Dict[str, Any], bool]:
        prefs = self._store.get_preferences(user_id)
        if prefs is None:
            return default_preferences(self._config), False
        return preferences_to_dict(prefs), True

    def update_preferences(self, user_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}

        for name in BOOLEAN_FIELDS:
            if isinstance(body.get(name), bool):
                updates[name] = body[name]

        reminder = body.get("prayer_reminder_minutes")
        if _is_number(reminder):
            updates["prayer_reminder_minutes"] = int(max(0, min(MAX_REMINDER_MINUTES, reminder)))

        timezone_name = body.get("timezone")
        if isinstance(timezone_name, str):
            try:
                ZoneInfo(timezone_name)
                updates["timezone"] = timezone_name
            except (ZoneInfoNotFoundError, ValueError):
                self._logger.warning("Ignoring unknown timezone %r for %s", timezone_name, user_id)

        if isinstance(body.get("location_name"), str):
            updates["location_name"] = body["location_name"][:MAX_LOCATION_NAME]

        latitude, longitude = body.get("latitude"), body.get("longitude")
        coordinates_changed = (
            _is_number(latitude)
            and _is_number(longitude)
            and -90 <= latitude <= 90
            and -180 <= longitude <= 180
        )
        if coordinates_changed:
            updates["latitude"] = float(latitude)
            updates["longitude"] = float(longitude)

        if not updates:
            raise AccountError("No valid fields to update")

        prefs = self._store.upsert_preferences(
            user_id, updates, default_preferences(self._config)
        )

        if coordinates_changed:
            # The dispatch cache never invalidates on its own; refresh today's row.
            local_today = self._clock.now().astimezone(
                resolve_timezone(prefs.timezone, self._config.default_timezone)
            ).date()
            self._resolver.refresh(user_id, prefs.latitude, prefs.longitude, local_today)

        return preferences_to_dict(prefs)
