from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    from ibadah.models import NotificationPreferences
    from ibadah.store import NotificationStore


class ApiError(RuntimeError):
    """Raised when the prayer API request fails or returns unusable data."""


CALCULATION_METHODS = {
    1: "University of Islamic Sciences, Karachi",
    2: "Islamic Society of North America (ISNA)",
    3: "Muslim World League",
    4: "Umm Al-Qura University, Makkah",
    5: "Egyptian General Authority of Survey",
    7: "Institute of Geophysics, University of Tehran",
    8: "Gulf Region",
    9: "Kuwait",
    10: "Qatar",
    11: "Majlis Ugama Islam Singapura, Singapore",
    12: "Union Organization Islamic de France",
    13: "Diyanet İşleri Başkanlığı, Turkey",
    14: "Spiritual Administration of Muslims of Russia",
    15: "Moonsighting Committee Worldwide",
}


class Prayer(Enum):
    """The five obligatory prayers, in the order they are checked each day."""

    FAJR = ("fajr", "Fajr", "ฟัจร์", "الفجر")
    DHUHR = ("dhuhr", "Dhuhr", "ซุฮ์ริ", "الظهر")
    ASR = ("asr", "Asr", "อัสริ", "العصر")
    MAGHRIB = ("maghrib", "Maghrib", "มัฆริบ", "المغرب")
    ISHA = ("isha", "Isha", "อิชาอ์", "العشاء")

    def __init__(self, key: str, name_en: str, name_th: str, name_ar: str) -> None:
        self.key = key
        self.name_en = name_en
        self.name_th = name_th
        self.name_ar = name_ar

    @property
    def notification_type(self) -> str:
        return f"prayer_{self.key}"

    def is_enabled(self, prefs: "NotificationPreferences") -> bool:
        flags = {
            Prayer.FAJR: prefs.prayer_fajr,
            Prayer.DHUHR: prefs.prayer_dhuhr,
            Prayer.ASR: prefs.prayer_asr,
            Prayer.MAGHRIB: prefs.prayer_maghrib,
            Prayer.ISHA: prefs.prayer_isha,
        }
        return bool(flags[self])


@dataclass(frozen=True)
class PrayerTimes:
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str

    def time_for(self, prayer: Prayer) -> str:
        times = {
            Prayer.FAJR: self.fajr,
            Prayer.DHUHR: self.dhuhr,
            Prayer.ASR: self.asr,
            Prayer.MAGHRIB: self.maghrib,
            Prayer.ISHA: self.isha,
        }
        return times[prayer]

    def to_dict(self) -> Dict[str, str]:
        return {
            "fajr": self.fajr,
            "sunrise": self.sunrise,
            "dhuhr": self.dhuhr,
            "asr": self.asr,
            "maghrib": self.maghrib,
            "isha": self.isha,
        }


def prayer_times_from_api(payload: Dict[str, Any]) -> PrayerTimes:
    # Aladhan wraps timings as {"code": 200, "data": {"timings": {"Fajr": ...}}}.
    if payload.get("code") != 200:
        raise ApiError(f"API returned status {payload.get('status', payload.get('code'))}")
    try:
        timings = payload["data"]["timings"]
    except (KeyError, TypeError) as exc:
        raise ApiError("API payload is missing data.timings") from exc
    if not isinstance(timings, dict):
        raise ApiError("API payload 'timings' must be a mapping")

    values: Dict[str, str] = {}
    for key in ("Fajr", "Sunrise", "Dhuhr", "Asr", "Maghrib", "Isha"):
        raw = timings.get(key)
        if not isinstance(raw, str):
            raise ApiError(f"Missing timing in API payload: {key}")
        # Some responses append the zone abbreviation, e.g. "04:32 (+07)".
        hhmm = raw.split(" ")[0]
        try:
            time_to_minutes(hhmm)
        except ValueError as exc:
            raise ApiError(f"Invalid timing for {key}: {raw}") from exc
        values[key.lower()] = hhmm
    return PrayerTimes(**values)


def time_to_minutes(hhmm: str) -> int:
    hour_str, minute_str = hhmm.split(":")
    hour, minute = int(hour_str), int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time out of range: {hhmm}")
    return hour * 60 + minute


def minutes_to_time(minutes: int) -> str:
    hours = (minutes // 60) % 24
    return f"{hours:02d}:{minutes % 60:02d}"


def resolve_timezone(name: Optional[str], default: str) -> tzinfo:
    logger = logging.getLogger("Timezone")
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; using %s", name, default)
    return ZoneInfo(default)


class Clock:
    def now(self) -> datetime:  # pragma: no cover - interface only
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class PrayerTimeResolver:
    """Returns a user's prayer times for a day, reading through the cache table."""

    def __init__(
        self,
        *,
        api_client: Any,
        store: "NotificationStore",
        method: int = 3,
    ) -> None:
        self._api_client = api_client
        self._store = store
        self._method = method
        self._logger = logging.getLogger(self.__class__.__name__)

    def resolve(
        self, user_id: str, latitude: float, longitude: float, day: date
    ) -> Optional[PrayerTimes]:
        # A cached row wins even if the user has since moved; rows are per date.
        cached = self._store.get_cached_prayer_times(user_id, day)
        if cached is not None:
            return cached
        return self.refresh(user_id, latitude, longitude, day)

    def refresh(
        self, user_id: str, latitude: float, longitude: float, day: date
    ) -> Optional[PrayerTimes]:
        try:
            payload = self._api_client.get_timings(
                latitude=latitude, longitude=longitude, day=day, method=self._method
            )
            times = prayer_times_from_api(payload)
        except ApiError as exc:
            self._logger.warning(
                "Prayer time fetch failed for user %s on %s: %s", user_id, day, exc
            )
            return None

        self._store.upsert_prayer_times(user_id, day, times, latitude, longitude)
        return times
