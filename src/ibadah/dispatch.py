from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from ibadah.config import DispatchConfig
from ibadah.line_messaging import Message, SendResult
from ibadah.messages import FALLBACK_WISDOM, MessageBuilder, Wisdom
from ibadah.models import STATUS_FAILED, STATUS_SENT, UserLineConnection
from ibadah.prayer_times import (
    Clock,
    Prayer,
    PrayerTimeResolver,
    SystemClock,
    resolve_timezone,
    time_to_minutes,
)
from ibadah.store import NotificationStore


@dataclass
class DispatchResult:
    message: str
    sent: int = 0
    errors: List[str] = field(default_factory=list)
    breakdown: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": True,
            "message": self.message,
            "sent": self.sent,
        }
        if self.breakdown is not None:
            payload["breakdown"] = dict(self.breakdown)
        if self.errors:
            payload["errors"] = list(self.errors)
        return payload


def in_send_window(current_minute: int, notify_minute: int, window_minutes: int) -> bool:
    diff = current_minute - notify_minute
    return 0 <= diff < window_minutes


def select_daily_wisdom(store: NotificationStore, day: date) -> Wisdom:
    """Pinned row for the day, else the undated pool rotated by day of year."""
    row = store.get_pinned_wisdom(day)
    if row is None:
        pool = store.list_wisdom_pool()
        if not pool:
            return FALLBACK_WISDOM
        row = pool[day.timetuple().tm_yday % len(pool)]
    return Wisdom(
        arabic=row.arabic,
        transliteration=row.transliteration,
        meaning_th=row.meaning_th,
        source=row.source,
        source_detail=row.source_detail,
    )


class _Dispatcher:
    def __init__(
        self,
        *,
        store: NotificationStore,
        gateway: Any,
        messages: MessageBuilder,
        config: DispatchConfig,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._messages = messages
        self._config = config
        self._clock = clock or SystemClock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def _local_now(self, timezone_name: Optional[str], now: datetime) -> datetime:
        return now.astimezone(resolve_timezone(timezone_name, self._config.default_timezone))

    def _deliver(
        self,
        connection: UserLineConnection,
        notification_type: str,
        local_date: date,
        messages: List[Message],
        description: str,
    ) -> Optional[SendResult]:
        """Claim, push, log. None when this (user, type, day) was already claimed."""
        if not self._store.claim_notification(connection.user_id, notification_type, local_date):
            self._logger.debug(
                "Skipping %s for user %s: already sent on %s",
                notification_type,
                connection.user_id,
                local_date,
            )
            return None

        try:
            result = self._gateway.push_message(connection.line_user_id, messages)
        except Exception as exc:
            self._logger.exception(
                "Push of %s to %s raised", notification_type, connection.line_user_id
            )
            result = SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        try:
            self._store.add_log(
                user_id=connection.user_id,
                line_user_id=connection.line_user_id,
                notification_type=notification_type,
                message_content=description,
                status=STATUS_SENT if result.success else STATUS_FAILED,
                error_message=None if result.success else (result.error or "Unknown error"),
            )
        except Exception:
            # The push outcome stands; the claim below still follows it.
            self._logger.exception(
                "Could not log %s for user %s", notification_type, connection.user_id
            )

        if not result.success:
            # A failed push must not block a later run inside the same window.
            self._store.release_claim(connection.user_id, notification_type, local_date)
        return result


class PrayerDispatcher(_Dispatcher):
    """One sweep of prayer reminders; meant to run every few minutes."""

    def __init__(self, *, resolver: PrayerTimeResolver, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._resolver = resolver

    def run(self) -> DispatchResult:
        now = self._clock.now()
        connections = self._store.list_active_connections()
        if not connections:
            return DispatchResult(message="No active connections")

        self._logger.info("Prayer dispatch started for %s connections", len(connections))
        result = DispatchResult(message="Prayer notifications processed")
        for connection, prefs in connections:
            if prefs is None:
                continue

            local_now = self._local_now(prefs.timezone, now)
            today = local_now.date()
            current_minute = local_now.hour * 60 + local_now.minute
            reminder_minutes = prefs.prayer_reminder_minutes
            if reminder_minutes is None:
                reminder_minutes = self._config.default_reminder_minutes
            location_name = prefs.location_name or self._config.default_location_name

            times = self._resolver.resolve(
                connection.user_id, prefs.latitude, prefs.longitude, today
            )
            if times is None:
                result.errors.append(
                    f"Failed to get prayer times for user {connection.user_id}"
                )
                continue

            for prayer in Prayer:
                if not prayer.is_enabled(prefs):
                    continue
                prayer_time = times.time_for(prayer)
                notify_minute = time_to_minutes(prayer_time) - reminder_minutes
                if not in_send_window(
                    current_minute, notify_minute, self._config.send_window_minutes
                ):
                    continue

                outcome = self._deliver(
                    connection,
                    prayer.notification_type,
                    today,
                    self._messages.prayer(prayer, prayer_time, location_name),
                    f"Prayer notification for {prayer.key}",
                )
                if outcome is None:
                    continue
                if outcome.success:
                    result.sent += 1
                    self._logger.info(
                        "Sent %s notification to %s", prayer.key, connection.line_user_id
                    )
                else:
                    result.errors.append(
                        f"Failed to send {prayer.key} to {connection.line_user_id}: {outcome.error}"
                    )

        self._logger.info("Prayer dispatch completed. Sent: %s", result.sent)
        return result


class ScheduledDispatcher(_Dispatcher):
    """One sweep of the fixed-hour reminders; meant to run hourly."""

    def __init__(
        self,
        *,
        wisdom_selector: Callable[[NotificationStore, date], Wisdom] = select_daily_wisdom,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._wisdom_selector = wisdom_selector

    def run(self) -> DispatchResult:
        now = self._clock.now()
        connections = self._store.list_active_connections()
        if not connections:
            return DispatchResult(message="No active connections")

        self._logger.info("Scheduled dispatch started for %s connections", len(connections))
        schedule = self._config.schedule
        result = DispatchResult(
            message="Scheduled notifications processed",
            breakdown={name: 0 for name in schedule},
        )
        wisdom: Optional[Wisdom] = None

        for connection, prefs in connections:
            if prefs is None:
                continue

            local_now = self._local_now(prefs.timezone, now)
            for notification_type, target_hour in schedule.items():
                if local_now.hour != target_hour:
                    continue
                if not prefs.is_scheduled_enabled(notification_type):
                    continue

                if notification_type == "daily_wisdom" and wisdom is None:
                    reference_day = self._local_now(None, now).date()
                    wisdom = self._wisdom_selector(self._store, reference_day)

                outcome = self._deliver(
                    connection,
                    notification_type,
                    local_now.date(),
                    self._build(notification_type, wisdom),
                    f"Scheduled notification: {notification_type}",
                )
                if outcome is None:
                    continue
                if outcome.success:
                    result.sent += 1
                    result.breakdown[notification_type] += 1
                    self._logger.info(
                        "Sent %s notification to %s", notification_type, connection.line_user_id
                    )
                else:
                    result.errors.append(
                        f"Failed to send {notification_type} to {connection.line_user_id}: {outcome.error}"
                    )

        self._logger.info("Scheduled dispatch completed. Sent: %s", result.sent)
        return result

    def _build(self, notification_type: str, wisdom: Optional[Wisdom]) -> List[Message]:
        if notification_type == "adhkar_morning":
            return self._messages.morning_adhkar()
        if notification_type == "adhkar_evening":
            return self._messages.evening_adhkar()
        if notification_type == "daily_wisdom":
            return self._messages.daily_wisdom(wisdom or FALLBACK_WISDOM)
        if notification_type == "quran_reminder":
            return self._messages.quran_reminder()
        raise ValueError(f"Unknown scheduled notification: {notification_type}")
