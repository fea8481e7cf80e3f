from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional, Sequence, Union

import requests


MULTICAST_LIMIT = 500


@dataclass(frozen=True)
class TextMessage:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class FlexMessage:
    contents: Dict[str, Any]
    alt_text: str = "Notification"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "flex",
            "altText": self.alt_text or "Notification",
            "contents": self.contents,
        }


Message = Union[TextMessage, FlexMessage]


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class LineProfile:
    user_id: str
    display_name: str
    picture_url: Optional[str] = None
    status_message: Optional[str] = None


@dataclass
class LineMessagingClient:
    """Thin client for the LINE Messaging API. Failures come back as SendResult."""

    channel_access_token: str
    channel_secret: str
    base_url: str = "https://api.line.me/v2/bot"
    timeout_seconds: int = 10
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._logger = logging.getLogger(self.__class__.__name__)

    def verify_signature(self, body: Union[str, bytes], signature: str) -> bool:
        if not self.channel_secret:
            self._logger.error("LINE channel secret is not configured")
            return False
        raw = body.encode("utf-8") if isinstance(body, str) else body
        digest = hmac.new(self.channel_secret.encode("utf-8"), raw, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature or "")

    def push_message(self, to: str, messages: Sequence[Message]) -> SendResult:
        return self._post_messages("/message/push", {"to": to}, messages)

    def multicast(self, to: Sequence[str], messages: Sequence[Message]) -> SendResult:
        if not to:
            return SendResult(success=True)
        if len(to) > MULTICAST_LIMIT:
            self._logger.error("Multicast limit exceeded: %s recipients", len(to))
            return SendResult(
                success=False, error=f"Max {MULTICAST_LIMIT} users per multicast request"
            )
        return self._post_messages("/message/multicast", {"to": list(to)}, messages)

    def reply_message(self, reply_token: str, messages: Sequence[Message]) -> SendResult:
        return self._post_messages("/message/reply", {"replyToken": reply_token}, messages)

    def get_profile(self, line_user_id: str) -> Optional[LineProfile]:
        url = f"{self.base_url}/profile/{line_user_id}"
        try:
            resp = self.session.get(url, headers=self._auth_headers(), timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            self._logger.warning("LINE get profile failed: %s", exc)
            return None
        if resp.status_code != 200:
            self._logger.warning("LINE get profile failed: %s", resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        return LineProfile(
            user_id=data.get("userId", line_user_id),
            display_name=data.get("displayName", ""),
            picture_url=data.get("pictureUrl"),
            status_message=data.get("statusMessage"),
        )

    def issue_link_token(self, line_user_id: str) -> Optional[str]:
        url = f"{self.base_url}/user/{line_user_id}/linkToken"
        try:
            resp = self.session.post(url, headers=self._auth_headers(), timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            self._logger.warning("LINE issue link token failed: %s", exc)
            return None
        if resp.status_code != 200:
            self._logger.warning("LINE issue link token failed: %s", resp.status_code)
            return None
        try:
            return resp.json().get("linkToken")
        except ValueError:
            return None

    def _post_messages(
        self, path: str, target: Dict[str, Any], messages: Sequence[Message]
    ) -> SendResult:
        url = f"{self.base_url}{path}"
        body = dict(target, messages=[message.to_dict() for message in messages])
        headers = dict(self._auth_headers(), **{"Content-Type": "application/json"})
        try:
            resp = self.session.post(url, json=body, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            self._logger.error("LINE request to %s failed: %s", path, exc)
            return SendResult(success=False, error=str(exc))

        if 200 <= resp.status_code < 300:
            return SendResult(success=True)

        error = f"HTTP {resp.status_code}"
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            error = str(payload["message"])
        self._logger.error("LINE request to %s failed: %s", path, error)
        return SendResult(success=False, error=error)

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.channel_access_token}"}
