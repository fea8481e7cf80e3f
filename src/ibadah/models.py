"""Tables behind LINE notification delivery."""

from __future__ import annotations

import datetime as dt
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ibadah.db import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_LATITUDE = 13.7563
DEFAULT_LONGITUDE = 100.5018

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"


class UserLineConnection(Base):
    """Pairing of an internal user with a LINE user id; deactivated, never deleted."""

    __tablename__ = "user_line_connections"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    line_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    connected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class NotificationPreferences(Base):
    __tablename__ = "user_notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    prayer_fajr: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prayer_dhuhr: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prayer_asr: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prayer_maghrib: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prayer_isha: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prayer_reminder_minutes: Mapped[Optional[int]] = mapped_column(Integer, default=10)

    adhkar_morning: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    adhkar_evening: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    daily_wisdom: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quran_reminder: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    latitude: Mapped[float] = mapped_column(Float, default=DEFAULT_LATITUDE, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, default=DEFAULT_LONGITUDE, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), default="Asia/Bangkok")
    location_name: Mapped[Optional[str]] = mapped_column(String(100), default="Bangkok")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    def is_scheduled_enabled(self, notification_type: str) -> bool:
        flags = {
            "adhkar_morning": self.adhkar_morning,
            "daily_wisdom": self.daily_wisdom,
            "adhkar_evening": self.adhkar_evening,
            "quran_reminder": self.quran_reminder,
        }
        return bool(flags.get(notification_type, False))


class PrayerTimesCacheEntry(Base):
    __tablename__ = "prayer_times_cache"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_prayer_times_cache_user_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    fajr: Mapped[str] = mapped_column(String(5), nullable=False)
    sunrise: Mapped[str] = mapped_column(String(5), nullable=False)
    dhuhr: Mapped[str] = mapped_column(String(5), nullable=False)
    asr: Mapped[str] = mapped_column(String(5), nullable=False)
    maghrib: Mapped[str] = mapped_column(String(5), nullable=False)
    isha: Mapped[str] = mapped_column(String(5), nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class NotificationLog(Base):
    """Append-only record of every delivery attempt and webhook lifecycle event."""

    __tablename__ = "notification_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    line_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    message_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class NotificationClaim(Base):
    """One row per (user, type, local day); the unique key makes a send at-most-once."""

    __tablename__ = "notification_claims"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "notification_type",
            "local_date",
            name="uq_notification_claim_user_type_date",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    local_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class DailyWisdom(Base):
    __tablename__ = "daily_wisdom"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    arabic: Mapped[str] = mapped_column(Text, nullable=False)
    transliteration: Mapped[str] = mapped_column(Text, nullable=False)
    meaning_th: Mapped[str] = mapped_column(Text, nullable=False)
    meaning_en: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(255), nullable=False)
    source_detail: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    display_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
