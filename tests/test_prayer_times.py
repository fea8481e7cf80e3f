from __future__ import annotations

from datetime import date

import pytest

from fakes import BANGKOK_DAY_TIMES, FailingApiClient, FakeApiClient, aladhan_payload
from ibadah.models import PrayerTimesCacheEntry
from ibadah.prayer_times import (
    ApiError,
    Prayer,
    PrayerTimeResolver,
    minutes_to_time,
    prayer_times_from_api,
    resolve_timezone,
    time_to_minutes,
)


def test_parses_the_five_prayers_and_sunrise() -> None:
    times = prayer_times_from_api(aladhan_payload())

    assert times == BANGKOK_DAY_TIMES
    assert times.time_for(Prayer.MAGHRIB) == "18:05"


def test_strips_timezone_suffix_from_timings() -> None:
    times = prayer_times_from_api(aladhan_payload(Fajr="04:32 (+07)", Isha="19:41 (ICT)"))

    assert times.fajr == "04:32"
    assert times.isha == "19:41"


def test_non_200_code_is_an_api_error() -> None:
    with pytest.raises(ApiError):
        prayer_times_from_api({"code": 400, "status": "BAD_REQUEST", "data": "Invalid date"})


def test_missing_timing_is_an_api_error() -> None:
    payload = aladhan_payload()
    del payload["data"]["timings"]["Asr"]

    with pytest.raises(ApiError, match="Asr"):
        prayer_times_from_api(payload)


def test_out_of_range_timing_is_an_api_error() -> None:
    with pytest.raises(ApiError):
        prayer_times_from_api(aladhan_payload(Dhuhr="25:10"))


def test_time_conversions() -> None:
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("05:00") == 300
    assert time_to_minutes("23:59") == 1439
    assert minutes_to_time(290) == "04:50"
    with pytest.raises(ValueError):
        time_to_minutes("12:60")


def test_prayer_flags_map_to_matching_preference_columns() -> None:
    class Prefs:
        prayer_fajr = False
        prayer_dhuhr = True
        prayer_asr = False
        prayer_maghrib = True
        prayer_isha = False

    enabled = [prayer.key for prayer in Prayer if prayer.is_enabled(Prefs())]

    assert enabled == ["dhuhr", "maghrib"]
    assert Prayer.ISHA.notification_type == "prayer_isha"


def test_unknown_timezone_falls_back_to_default() -> None:
    assert str(resolve_timezone("Mars/Olympus", "Asia/Bangkok")) == "Asia/Bangkok"
    assert str(resolve_timezone(None, "UTC")) == "UTC"
    assert str(resolve_timezone("Asia/Jakarta", "UTC")) == "Asia/Jakarta"


def test_cache_miss_fetches_once_and_stores_row(store, database) -> None:
    api = FakeApiClient()
    resolver = PrayerTimeResolver(api_client=api, store=store, method=3)
    day = date(2025, 1, 1)

    first = resolver.resolve("u1", 13.7563, 100.5018, day)
    second = resolver.resolve("u1", 13.7563, 100.5018, day)

    assert first == second == BANGKOK_DAY_TIMES
    assert api.calls == [(13.7563, 100.5018, day, 3)]
    with database.session_scope() as session:
        rows = session.query(PrayerTimesCacheEntry).all()
        assert len(rows) == 1
        assert rows[0].user_id == "u1"
        assert rows[0].date == day


def test_cached_row_is_used_even_after_coordinates_change(store) -> None:
    store.upsert_prayer_times("u1", date(2025, 1, 1), BANGKOK_DAY_TIMES, 13.7, 100.5)
    api = FakeApiClient()
    resolver = PrayerTimeResolver(api_client=api, store=store)

    times = resolver.resolve("u1", 7.0, 100.4, date(2025, 1, 1))

    assert times == BANGKOK_DAY_TIMES
    assert api.calls == []


def test_fetch_failure_returns_none_and_caches_nothing(store) -> None:
    resolver = PrayerTimeResolver(api_client=FailingApiClient(), store=store)

    assert resolver.resolve("u1", 13.7, 100.5, date(2025, 1, 1)) is None
    assert store.get_cached_prayer_times("u1", date(2025, 1, 1)) is None


def test_refresh_overwrites_todays_row(store) -> None:
    store.upsert_prayer_times("u1", date(2025, 1, 1), BANGKOK_DAY_TIMES, 13.7, 100.5)
    api = FakeApiClient(payload=aladhan_payload(Fajr="04:41"))
    resolver = PrayerTimeResolver(api_client=api, store=store)

    resolver.refresh("u1", 7.88, 98.39, date(2025, 1, 1))

    assert store.get_cached_prayer_times("u1", date(2025, 1, 1)).fajr == "04:41"
