from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from ibadah.line_messaging import Message
from ibadah.messages import MessageBuilder
from ibadah.models import STATUS_SENT
from ibadah.store import NotificationStore


LINK_COMMANDS = {"link", "ลิงก์", "เชื่อมต่อ"}
UNLINK_COMMANDS = {"unlink", "ยกเลิก", "ตัดการเชื่อมต่อ"}
STATUS_COMMANDS = {"status", "สถานะ"}
HELP_COMMANDS = {"help", "ช่วยเหลือ", "?"}


class WebhookHandler:
    """Handles the events of one verified LINE webhook delivery."""

    def __init__(
        self,
        *,
        store: NotificationStore,
        gateway: Any,
        messages: MessageBuilder,
        schedule: Dict[str, int],
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._messages = messages
        self._schedule = schedule
        self._logger = logging.getLogger(self.__class__.__name__)

    def handle_body(self, body: Dict[str, Any]) -> None:
        events = body.get("events") or []
        for event in events:
            if isinstance(event, dict):
                self.handle_event(event)

    def handle_event(self, event: Dict[str, Any]) -> None:
        line_user_id = (event.get("source") or {}).get("userId")
        event_type = event.get("type")
        if not line_user_id:
            self._logger.info("Ignoring %s event without userId", event_type)
            return

        if event_type == "follow":
            self._on_follow(line_user_id, event.get("replyToken"))
        elif event_type == "unfollow":
            self._on_unfollow(line_user_id)
        elif event_type == "message":
            self._on_message(line_user_id, event)
        elif event_type == "accountLink":
            self._on_account_link(line_user_id, event)
        elif event_type == "postback":
            self._on_postback(line_user_id, event)
        else:
            self._logger.info("Unhandled event type: %s", event_type)

    def _on_follow(self, line_user_id: str, reply_token: Optional[str]) -> None:
        self._logger.info("New follower: %s", line_user_id)
        profile = self._gateway.get_profile(line_user_id)
        display_name = (profile.display_name if profile else "") or "Friend"
        if reply_token:
            self._reply(reply_token, self._messages.welcome(display_name))
        self._store.add_log(
            line_user_id=line_user_id,
            notification_type="follow",
            message_content="User followed the bot",
            status=STATUS_SENT,
        )

    def _on_unfollow(self, line_user_id: str) -> None:
        deactivated = self._store.deactivate_line_user(line_user_id)
        self._logger.info("User unfollowed: %s (%s connections deactivated)", line_user_id, deactivated)
        self._store.add_log(
            line_user_id=line_user_id,
            notification_type="unfollow",
            message_content="User unfollowed the bot",
            status=STATUS_SENT,
        )

    def _on_message(self, line_user_id: str, event: Dict[str, Any]) -> None:
        message = event.get("message") or {}
        reply_token = event.get("replyToken")
        if message.get("type") != "text" or not reply_token:
            return

        text = (message.get("text") or "").strip().lower()
        connection = self._store.get_active_connection_for_line_user(line_user_id)

        if text in LINK_COMMANDS:
            if connection is not None:
                self._reply(reply_token, self._messages.already_linked())
            else:
                link_token = self._gateway.issue_link_token(line_user_id)
                self._reply(reply_token, self._messages.link_instructions(link_token))
        elif text in UNLINK_COMMANDS:
            if connection is not None:
                self._store.deactivate_line_user(line_user_id)
                self._reply(reply_token, self._messages.account_unlinked())
            else:
                self._reply(reply_token, self._messages.not_linked())
        elif text in STATUS_COMMANDS:
            if connection is not None:
                prefs = self._store.get_preferences(connection.user_id)
                self._reply(reply_token, self._messages.status(prefs))
            else:
                self._reply(reply_token, self._messages.status_not_linked())
        elif text in HELP_COMMANDS:
            self._reply(reply_token, self._messages.help())
        else:
            self._reply(reply_token, self._messages.unknown_command())

    def _on_account_link(self, line_user_id: str, event: Dict[str, Any]) -> None:
        link = event.get("link") or {}
        if link.get("result") != "ok":
            self._logger.info("Account link failed for %s", line_user_id)
            return
        # The connection row is written by the link endpoint; this only confirms it.
        self._logger.info("Account linked: %s nonce=%s", line_user_id, link.get("nonce"))
        result = self._gateway.push_message(
            line_user_id, self._messages.account_linked(self._schedule)
        )
        if not result.success:
            self._logger.warning("Link confirmation to %s failed: %s", line_user_id, result.error)

    def _on_postback(self, line_user_id: str, event: Dict[str, Any]) -> None:
        data = (event.get("postback") or {}).get("data")
        reply_token = event.get("replyToken")
        if not data or not reply_token:
            return
        action = parse_qs(data).get("action", [None])[0]
        if action == "link":
            self._reply(reply_token, self._messages.link_instructions())
        elif action == "settings":
            self._reply(reply_token, self._messages.settings_link())
        else:
            self._logger.info("Unknown postback action from %s: %s", line_user_id, action)

    def _reply(self, reply_token: str, messages: List[Message]) -> None:
        result = self._gateway.reply_message(reply_token, messages)
        if not result.success:
            self._logger.warning("Reply failed: %s", result.error)
