from __future__ import annotations

import pytest

from fakes import FakeGateway, seed_user
from ibadah.config import DEFAULT_SCHEDULE
from ibadah.messages import MessageBuilder
from ibadah.webhook import WebhookHandler


SITE = "https://ibadah.test"


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def handler(store, gateway) -> WebhookHandler:
    return WebhookHandler(
        store=store,
        gateway=gateway,
        messages=MessageBuilder(site_url=SITE),
        schedule=dict(DEFAULT_SCHEDULE),
    )


def _text_event(text: str, user: str = "U-line-1") -> dict:
    return {
        "type": "message",
        "replyToken": "reply-1",
        "source": {"type": "user", "userId": user},
        "message": {"type": "text", "text": text},
    }


def _reply_text(gateway: FakeGateway) -> str:
    assert len(gateway.replies) == 1
    return gateway.replies[0][1][0].text


def test_follow_replies_welcome_and_logs(handler, gateway, store) -> None:
    handler.handle_body(
        {"events": [{"type": "follow", "replyToken": "r", "source": {"userId": "U-new"}}]}
    )

    assert "Amina" in _reply_text(gateway)
    assert [log.notification_type for log in store.list_logs()] == ["follow"]


def test_follow_without_profile_greets_friend(store) -> None:
    gateway = FakeGateway(profile_name="")
    handler = WebhookHandler(
        store=store,
        gateway=gateway,
        messages=MessageBuilder(site_url=SITE),
        schedule=dict(DEFAULT_SCHEDULE),
    )

    handler.handle_event({"type": "follow", "replyToken": "r", "source": {"userId": "U-new"}})

    assert "Friend" in _reply_text(gateway)


def test_unfollow_deactivates_connections(handler, store) -> None:
    seed_user(store, "u1", "U-line-1")

    handler.handle_event({"type": "unfollow", "source": {"userId": "U-line-1"}})

    assert store.get_active_connection_for_line_user("U-line-1") is None
    assert store.list_logs()[-1].notification_type == "unfollow"


def test_link_command_issues_link_token_when_not_linked(handler, gateway) -> None:
    handler.handle_event(_text_event("  LINK "))

    assert f"{SITE}/line-link?token=tok-123" in _reply_text(gateway)


def test_thai_link_command_when_already_linked(handler, gateway, store) -> None:
    seed_user(store, "u1", "U-line-1")

    handler.handle_event(_text_event("ลิงก์"))

    assert "เชื่อมต่อกับ Ibadah Station แล้ว" in _reply_text(gateway)


def test_unlink_command(handler, gateway, store) -> None:
    seed_user(store, "u1", "U-line-1")

    handler.handle_event(_text_event("unlink"))

    assert "ยกเลิกการลิงก์บัญชีแล้ว" in _reply_text(gateway)
    assert store.get_active_connection_for_user("u1") is None


def test_unlink_command_when_not_linked(handler, gateway) -> None:
    handler.handle_event(_text_event("ยกเลิก"))

    assert "ยังไม่ได้เชื่อมต่อ" in _reply_text(gateway)


def test_status_command_reports_flags(handler, gateway, store) -> None:
    seed_user(store, "u1", "U-line-1", adhkar_evening=False, location_name="Pattani")

    handler.handle_event(_text_event("status"))

    text = _reply_text(gateway)
    assert "เวลาละหมาด: เปิด" in text
    assert "อัซการเย็น: ปิด" in text
    assert "Pattani" in text


def test_status_command_when_not_linked(handler, gateway) -> None:
    handler.handle_event(_text_event("สถานะ"))

    assert "❌" in _reply_text(gateway)


def test_help_and_unknown_commands(handler, gateway) -> None:
    handler.handle_event(_text_event("help"))
    handler.handle_event(_text_event("salam"))

    assert "Help" in gateway.replies[0][1][0].text
    assert '"help"' in gateway.replies[1][1][0].text


def test_non_text_message_is_ignored(handler, gateway) -> None:
    event = _text_event("help")
    event["message"] = {"type": "sticker", "packageId": "1"}

    handler.handle_event(event)

    assert gateway.replies == []


def test_account_link_ok_pushes_confirmation(handler, gateway) -> None:
    handler.handle_event(
        {
            "type": "accountLink",
            "source": {"userId": "U-line-1"},
            "link": {"result": "ok", "nonce": "n-1"},
        }
    )
    handler.handle_event(
        {"type": "accountLink", "source": {"userId": "U-line-2"}, "link": {"result": "failed"}}
    )

    assert [to for to, _ in gateway.pushes] == ["U-line-1"]
    assert "(06:00)" in gateway.pushes[0][1][0].text


def test_postback_actions(handler, gateway) -> None:
    for data in ("action=link", "action=settings"):
        handler.handle_event(
            {
                "type": "postback",
                "replyToken": "r",
                "source": {"userId": "U-line-1"},
                "postback": {"data": data},
            }
        )

    assert f"{SITE}/th/settings/notifications" in gateway.replies[0][1][0].text
    assert gateway.replies[1][1][0].text.startswith("⚙️")


def test_event_without_user_is_ignored(handler, gateway, store) -> None:
    handler.handle_body({"events": [{"type": "follow", "replyToken": "r", "source": {}}]})

    assert gateway.replies == []
    assert store.list_logs() == []
