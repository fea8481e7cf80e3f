from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from fakes import (
    BANGKOK_DAY_TIMES,
    FailingApiClient,
    FakeApiClient,
    FakeGateway,
    FixedClock,
    seed_user,
)
from ibadah.dispatch import PrayerDispatcher, in_send_window
from ibadah.messages import MessageBuilder
from ibadah.models import STATUS_FAILED, STATUS_SENT
from ibadah.prayer_times import PrayerTimeResolver


FIRST_DAY = date(2025, 1, 1)


def _utc(hour: int, minute: int, day: date = FIRST_DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def _dispatcher(store, gateway, config, clock, api=None) -> PrayerDispatcher:
    resolver = PrayerTimeResolver(api_client=api or FakeApiClient(), store=store)
    return PrayerDispatcher(
        resolver=resolver,
        store=store,
        gateway=gateway,
        messages=MessageBuilder(site_url="https://ibadah.test"),
        config=config,
        clock=clock,
    )


def _only_fajr(**overrides):
    values = dict(
        prayer_dhuhr=False,
        prayer_asr=False,
        prayer_maghrib=False,
        prayer_isha=False,
    )
    values.update(overrides)
    return values


@pytest.mark.parametrize(
    ("current", "expected"),
    [(290, True), (294, True), (295, False), (289, False)],
)
def test_send_window_is_half_open(current: int, expected: bool) -> None:
    assert in_send_window(current, 290, 5) is expected


def test_no_active_connections(store, dispatch_config) -> None:
    dispatcher = _dispatcher(store, FakeGateway(), dispatch_config, FixedClock(_utc(4, 50)))

    result = dispatcher.run()

    assert result.to_dict() == {"success": True, "message": "No active connections", "sent": 0}


def test_fajr_reminder_in_bangkok_is_sent_once(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", timezone="Asia/Bangkok", **_only_fajr())
    store.upsert_prayer_times("u1", FIRST_DAY, BANGKOK_DAY_TIMES, 13.7563, 100.5018)
    gateway = FakeGateway()
    # 04:50 in Bangkok is 21:50 UTC on the previous day.
    clock = FixedClock(_utc(21, 50, date(2024, 12, 31)))
    dispatcher = _dispatcher(store, gateway, dispatch_config, clock, api=FailingApiClient())

    result = dispatcher.run()

    assert result.sent == 1
    assert result.errors == []
    assert [to for to, _ in gateway.pushes] == ["U-line-1"]
    assert "05:00" in gateway.pushes[0][1][0].text
    logs = store.list_logs(user_id="u1")
    assert [(log.notification_type, log.status) for log in logs] == [("prayer_fajr", STATUS_SENT)]
    assert logs[0].sent_at is not None

    for minute in (54, 55):
        clock.current = _utc(21, minute, date(2024, 12, 31))
        assert dispatcher.run().sent == 0
    assert len(gateway.pushes) == 1


def test_local_date_is_used_for_the_prayer_time_lookup(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", timezone="Asia/Bangkok", **_only_fajr())
    api = FakeApiClient()
    dispatcher = _dispatcher(
        store, FakeGateway(), dispatch_config, FixedClock(_utc(21, 50, date(2024, 12, 31))), api=api
    )

    assert dispatcher.run().sent == 1
    assert api.calls[0][2] == FIRST_DAY
    assert store.get_cached_prayer_times("u1", FIRST_DAY) == BANGKOK_DAY_TIMES


def test_disabled_prayer_is_never_sent(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", **_only_fajr(prayer_fajr=False))
    gateway = FakeGateway()
    clock = FixedClock(_utc(4, 50))
    dispatcher = _dispatcher(store, gateway, dispatch_config, clock)

    for minute in range(50, 55):
        clock.current = _utc(4, minute)
        assert dispatcher.run().sent == 0

    assert gateway.pushes == []
    assert store.list_logs() == []


def test_zero_minute_reminder_fires_at_prayer_time(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", prayer_reminder_minutes=0, **_only_fajr())
    gateway = FakeGateway()

    early = _dispatcher(store, gateway, dispatch_config, FixedClock(_utc(4, 50))).run()
    on_time = _dispatcher(store, gateway, dispatch_config, FixedClock(_utc(5, 0))).run()

    assert early.sent == 0
    assert on_time.sent == 1


def test_missing_reminder_uses_default(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", prayer_reminder_minutes=None, **_only_fajr())

    result = _dispatcher(store, FakeGateway(), dispatch_config, FixedClock(_utc(4, 52))).run()

    assert result.sent == 1


def test_unknown_timezone_uses_default(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", timezone="Not/AZone", **_only_fajr())

    result = _dispatcher(
        store, FakeGateway(), dispatch_config, FixedClock(_utc(21, 51, date(2024, 12, 31)))
    ).run()

    assert result.sent == 1


def test_failed_send_is_logged_and_loop_continues(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-blocked", **_only_fajr())
    seed_user(store, "u2", "U-line-2", **_only_fajr())
    gateway = FakeGateway(failing={"U-blocked": "The user hasn't added the bot"})
    clock = FixedClock(_utc(4, 50))
    dispatcher = _dispatcher(store, gateway, dispatch_config, clock)

    result = dispatcher.run()

    assert result.sent == 1
    assert result.errors == [
        "Failed to send fajr to U-blocked: The user hasn't added the bot"
    ]
    failed = store.list_logs(user_id="u1")
    assert len(failed) == 1
    assert failed[0].status == STATUS_FAILED
    assert failed[0].error_message == "The user hasn't added the bot"
    assert failed[0].sent_at is None

    # The claim was released, so a later run in the window tries again.
    gateway.failing.clear()
    clock.current = _utc(4, 52)
    retry = dispatcher.run()
    assert retry.sent == 1
    assert [to for to, _ in gateway.pushes] == ["U-blocked", "U-line-2", "U-blocked"]


def test_overlapping_runs_send_only_once(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", **_only_fajr())
    gateway = FakeGateway()
    clock = FixedClock(_utc(4, 50))
    first = _dispatcher(store, gateway, dispatch_config, clock)
    second = _dispatcher(store, gateway, dispatch_config, clock)
    seen: dict = {}

    def start_second_run(to: str) -> None:
        # Runs while the first sweep is mid-send, before its log row exists.
        if "result" in seen:
            return
        seen["logs"] = store.list_logs()
        seen["result"] = second.run()

    gateway.on_push = start_second_run

    result = first.run()

    assert result.sent == 1
    assert seen["logs"] == []
    assert seen["result"].sent == 0
    assert len(gateway.pushes) == 1


def test_connection_without_preferences_is_skipped(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1", preferences=False)
    api = FakeApiClient()

    result = _dispatcher(store, FakeGateway(), dispatch_config, FixedClock(_utc(4, 50)), api=api).run()

    assert result.message == "Prayer notifications processed"
    assert result.sent == 0
    assert api.calls == []


def test_inactive_connection_is_skipped(store, dispatch_config) -> None:
    connection = seed_user(store, "u1", "U-line-1", **_only_fajr())
    store.deactivate_connection(connection.id)

    result = _dispatcher(store, FakeGateway(), dispatch_config, FixedClock(_utc(4, 50))).run()

    assert result.message == "No active connections"


def test_prayer_time_failure_is_reported_per_user(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-line-1")

    result = _dispatcher(
        store, FakeGateway(), dispatch_config, FixedClock(_utc(4, 50)), api=FailingApiClient()
    ).run()

    assert result.sent == 0
    assert result.errors == ["Failed to get prayer times for user u1"]
    assert result.to_dict()["errors"] == ["Failed to get prayer times for user u1"]


def test_raising_push_is_contained_and_claim_released(store, dispatch_config) -> None:
    seed_user(store, "u1", "U-bad", **_only_fajr())
    seed_user(store, "u2", "U-good", **_only_fajr())
    gateway = FakeGateway(raising={"U-bad": RuntimeError("connection reset")})
    clock = FixedClock(_utc(4, 50))
    dispatcher = _dispatcher(store, gateway, dispatch_config, clock)

    result = dispatcher.run()

    assert result.sent == 1
    assert result.errors == ["Failed to send fajr to U-bad: connection reset"]
    assert [to for to, _ in gateway.pushes] == ["U-bad", "U-good"]
    failed = store.list_logs(user_id="u1")
    assert [(log.status, log.error_message) for log in failed] == [
        (STATUS_FAILED, "connection reset")
    ]

    gateway.raising.clear()
    clock.current = _utc(4, 52)
    retry = dispatcher.run()

    assert retry.sent == 1
    assert [to for to, _ in gateway.pushes][-1] == "U-bad"


def test_log_write_failure_keeps_the_sweep_going(store, dispatch_config, monkeypatch) -> None:
    seed_user(store, "u1", "U-line-1", **_only_fajr())
    seed_user(store, "u2", "U-line-2", **_only_fajr())
    gateway = FakeGateway()

    def broken_log(**kwargs):
        raise RuntimeError("log table locked")

    monkeypatch.setattr(store, "add_log", broken_log)
    clock = FixedClock(_utc(4, 50))
    dispatcher = _dispatcher(store, gateway, dispatch_config, clock)

    result = dispatcher.run()
    clock.current = _utc(4, 51)
    again = dispatcher.run()

    assert result.sent == 2
    assert again.sent == 0
    assert [to for to, _ in gateway.pushes] == ["U-line-1", "U-line-2"]
