from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from ibadah.db import Database
from ibadah.models import (
    STATUS_SENT,
    DailyWisdom,
    NotificationClaim,
    NotificationLog,
    NotificationPreferences,
    PrayerTimesCacheEntry,
    UserLineConnection,
)
from ibadah.prayer_times import PrayerTimes


ConnectionRow = Tuple[UserLineConnection, Optional[NotificationPreferences]]


class NotificationStore:
    """Row-level reads and writes; each call is its own short transaction."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._logger = logging.getLogger(self.__class__.__name__)

    # Connections

    def list_active_connections(self) -> List[ConnectionRow]:
        stmt = (
            select(UserLineConnection, NotificationPreferences)
            .outerjoin(
                NotificationPreferences,
                NotificationPreferences.user_id == UserLineConnection.user_id,
            )
            .where(UserLineConnection.is_active.is_(True))
            .order_by(UserLineConnection.id)
        )
        with self._db.session_scope() as session:
            return [(conn, prefs) for conn, prefs in session.execute(stmt).all()]

    def get_active_connection_for_user(self, user_id: str) -> Optional[UserLineConnection]:
        stmt = select(UserLineConnection).where(
            UserLineConnection.user_id == user_id,
            UserLineConnection.is_active.is_(True),
        )
        with self._db.session_scope() as session:
            return session.scalars(stmt).first()

    def get_active_connection_for_line_user(
        self, line_user_id: str
    ) -> Optional[UserLineConnection]:
        stmt = select(UserLineConnection).where(
            UserLineConnection.line_user_id == line_user_id,
            UserLineConnection.is_active.is_(True),
        )
        with self._db.session_scope() as session:
            return session.scalars(stmt).first()

    def create_connection(
        self,
        *,
        user_id: str,
        line_user_id: str,
        display_name: Optional[str] = None,
        picture_url: Optional[str] = None,
    ) -> UserLineConnection:
        connection = UserLineConnection(
            user_id=user_id,
            line_user_id=line_user_id,
            display_name=display_name,
            picture_url=picture_url,
            is_active=True,
            connected_at=datetime.now(timezone.utc),
        )
        with self._db.session_scope() as session:
            session.add(connection)
        return connection

    def deactivate_connection(self, connection_id: int) -> None:
        stmt = (
            update(UserLineConnection)
            .where(UserLineConnection.id == connection_id)
            .values(is_active=False, updated_at=datetime.now(timezone.utc))
        )
        with self._db.session_scope() as session:
            session.execute(stmt)

    def deactivate_line_user(self, line_user_id: str) -> int:
        stmt = (
            update(UserLineConnection)
            .where(
                UserLineConnection.line_user_id == line_user_id,
                UserLineConnection.is_active.is_(True),
            )
            .values(is_active=False, updated_at=datetime.now(timezone.utc))
        )
        with self._db.session_scope() as session:
            return session.execute(stmt).rowcount or 0

    # Preferences

    def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        stmt = select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
        with self._db.session_scope() as session:
            return session.scalars(stmt).first()

    def ensure_preferences(
        self, user_id: str, defaults: Dict[str, Any]
    ) -> NotificationPreferences:
        existing = self.get_preferences(user_id)
        if existing is not None:
            return existing
        prefs = NotificationPreferences(user_id=user_id, **defaults)
        try:
            with self._db.session_scope() as session:
                session.add(prefs)
        except IntegrityError:
            # Another request created the row first; theirs stands.
            existing = self.get_preferences(user_id)
            if existing is None:
                raise
            return existing
        return prefs

    def upsert_preferences(
        self, user_id: str, updates: Dict[str, Any], defaults: Dict[str, Any]
    ) -> NotificationPreferences:
        self.ensure_preferences(user_id, defaults)
        stmt = select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
        with self._db.session_scope() as session:
            prefs = session.scalars(stmt).one()
            for key, value in updates.items():
                setattr(prefs, key, value)
            prefs.updated_at = datetime.now(timezone.utc)
        return prefs

    # Prayer time cache

    def get_cached_prayer_times(self, user_id: str, day: date) -> Optional[PrayerTimes]:
        stmt = select(PrayerTimesCacheEntry).where(
            PrayerTimesCacheEntry.user_id == user_id,
            PrayerTimesCacheEntry.date == day,
        )
        with self._db.session_scope() as session:
            row = session.scalars(stmt).first()
            if row is None:
                return None
            return PrayerTimes(
                fajr=row.fajr,
                sunrise=row.sunrise,
                dhuhr=row.dhuhr,
                asr=row.asr,
                maghrib=row.maghrib,
                isha=row.isha,
            )

    def upsert_prayer_times(
        self,
        user_id: str,
        day: date,
        times: PrayerTimes,
        latitude: float,
        longitude: float,
    ) -> None:
        values = dict(times.to_dict(), latitude=latitude, longitude=longitude)
        try:
            self._write_prayer_times(user_id, day, values)
        except IntegrityError:
            # Lost an insert race on (user_id, date); the row exists now.
            self._write_prayer_times(user_id, day, values)

    def _write_prayer_times(self, user_id: str, day: date, values: Dict[str, Any]) -> None:
        stmt = select(PrayerTimesCacheEntry).where(
            PrayerTimesCacheEntry.user_id == user_id,
            PrayerTimesCacheEntry.date == day,
        )
        with self._db.session_scope() as session:
            row = session.scalars(stmt).first()
            if row is None:
                session.add(PrayerTimesCacheEntry(user_id=user_id, date=day, **values))
                return
            for key, value in values.items():
                setattr(row, key, value)

    # Delivery claims and log

    def claim_notification(self, user_id: str, notification_type: str, local_date: date) -> bool:
        """Insert the (user, type, day) claim; False when it already exists."""
        claim = NotificationClaim(
            user_id=user_id,
            notification_type=notification_type,
            local_date=local_date,
        )
        try:
            with self._db.session_scope() as session:
                session.add(claim)
        except IntegrityError:
            return False
        return True

    def release_claim(self, user_id: str, notification_type: str, local_date: date) -> None:
        stmt = delete(NotificationClaim).where(
            NotificationClaim.user_id == user_id,
            NotificationClaim.notification_type == notification_type,
            NotificationClaim.local_date == local_date,
        )
        with self._db.session_scope() as session:
            session.execute(stmt)

    def add_log(
        self,
        *,
        line_user_id: str,
        notification_type: str,
        status: str,
        user_id: Optional[str] = None,
        message_content: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        entry = NotificationLog(
            user_id=user_id,
            line_user_id=line_user_id,
            notification_type=notification_type,
            message_content=message_content,
            status=status,
            error_message=error_message,
            sent_at=now if status == STATUS_SENT else None,
            created_at=now,
        )
        with self._db.session_scope() as session:
            session.add(entry)

    def list_logs(
        self, *, user_id: Optional[str] = None, notification_type: Optional[str] = None
    ) -> List[NotificationLog]:
        stmt = select(NotificationLog).order_by(NotificationLog.id)
        if user_id is not None:
            stmt = stmt.where(NotificationLog.user_id == user_id)
        if notification_type is not None:
            stmt = stmt.where(NotificationLog.notification_type == notification_type)
        with self._db.session_scope() as session:
            return list(session.scalars(stmt).all())

    # Daily wisdom

    def get_pinned_wisdom(self, day: date) -> Optional[DailyWisdom]:
        stmt = (
            select(DailyWisdom)
            .where(DailyWisdom.display_date == day, DailyWisdom.is_active.is_(True))
            .order_by(DailyWisdom.id)
            .limit(1)
        )
        with self._db.session_scope() as session:
            return session.scalars(stmt).first()

    def list_wisdom_pool(self) -> List[DailyWisdom]:
        stmt = (
            select(DailyWisdom)
            .where(DailyWisdom.display_date.is_(None), DailyWisdom.is_active.is_(True))
            .order_by(DailyWisdom.id)
        )
        with self._db.session_scope() as session:
            return list(session.scalars(stmt).all())
