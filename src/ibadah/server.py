from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
import hmac
import json
import logging
from typing import Any, Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from ibadah.accounts import AccountError, AccountService, connection_to_dict
from ibadah.dispatch import PrayerDispatcher, ScheduledDispatcher
from ibadah.webhook import WebhookHandler


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):]


@dataclass
class NotificationServer:
    prayer_dispatcher: PrayerDispatcher
    scheduled_dispatcher: ScheduledDispatcher
    webhook_handler: WebhookHandler
    accounts: AccountService
    gateway: Any
    token_verifier: Any
    cron_secret: str = ""
    trusted_cron_header: str = "X-Vercel-Cron"
    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        if not self.cron_secret:
            self._logger.warning("No cron secret configured; dispatch endpoints are open")
        self._app = self._create_app()

    @property
    def app(self) -> Flask:
        return self._app

    def _cron_authorized(self) -> bool:
        if not self.cron_secret:
            return True
        token = _bearer_token()
        if token is not None and hmac.compare_digest(token, self.cron_secret):
            return True
        return bool(self.trusted_cron_header and request.headers.get(self.trusted_cron_header))

    def _create_app(self) -> Flask:
        app = Flask(__name__)

        def cron_required(handler):
            @wraps(handler)
            def wrapper(*args, **kwargs):
                if not self._cron_authorized():
                    self._logger.warning("Rejected dispatch call from %s", request.remote_addr)
                    return jsonify(error="Unauthorized"), 401
                return handler(*args, **kwargs)

            return wrapper

        def user_required(handler):
            @wraps(handler)
            def wrapper(*args, **kwargs):
                token = _bearer_token()
                if token is None:
                    return jsonify(error="Unauthorized"), 401
                user_id = self.token_verifier.get_user_id(token)
                if not user_id:
                    return jsonify(error="Invalid token"), 401
                g.user_id = user_id
                return handler(*args, **kwargs)

            return wrapper

        @app.errorhandler(AccountError)
        def account_error(exc: AccountError):
            return jsonify(error=str(exc)), exc.status_code

        @app.errorhandler(Exception)
        def unexpected_error(exc: Exception):
            if isinstance(exc, HTTPException):
                return exc
            self._logger.exception("Unhandled error on %s: %s", request.path, exc)
            return jsonify(error="Internal server error"), 500

        @app.get("/api/cron/prayer-notifications")
        @cron_required
        def prayer_notifications():
            return jsonify(self.prayer_dispatcher.run().to_dict())

        @app.get("/api/cron/scheduled-notifications")
        @cron_required
        def scheduled_notifications():
            return jsonify(self.scheduled_dispatcher.run().to_dict())

        @app.get("/api/line/webhook")
        def webhook_ready():
            return jsonify(status="LINE Webhook is ready")

        @app.post("/api/line/webhook")
        def webhook():
            raw = request.get_data()
            signature = request.headers.get("X-Line-Signature")
            if not signature or not self.gateway.verify_signature(raw, signature):
                self._logger.warning("Invalid LINE signature")
                return jsonify(error="Invalid signature"), 401
            try:
                body = json.loads(raw)
            except ValueError:
                return jsonify(error="Invalid JSON body"), 400
            self.webhook_handler.handle_body(body if isinstance(body, dict) else {})
            return jsonify(success=True)

        @app.get("/api/line/link")
        @user_required
        def link_status():
            connection = self.accounts.get_connection(g.user_id)
            if connection is None:
                return jsonify(connected=False, connection=None)
            return jsonify(connected=True, connection=connection_to_dict(connection))

        @app.post("/api/line/link")
        @user_required
        def link():
            body = request.get_json(silent=True) or {}
            connection, existed = self.accounts.link(g.user_id, body.get("lineUserId") or "")
            return jsonify(
                success=True,
                message="Already linked" if existed else "Account linked successfully",
                connection=connection_to_dict(connection),
            )

        @app.post("/api/line/unlink")
        @user_required
        def unlink():
            self.accounts.unlink(g.user_id)
            return jsonify(success=True, message="Account unlinked successfully")

        @app.get("/api/notifications/preferences")
        @user_required
        def get_preferences():
            preferences, exists = self.accounts.get_preferences(g.user_id)
            return jsonify(preferences=preferences, exists=exists)

        @app.put("/api/notifications/preferences")
        @user_required
        def update_preferences():
            body = request.get_json(silent=True)
            preferences = self.accounts.update_preferences(
                g.user_id, body if isinstance(body, dict) else {}
            )
            return jsonify(
                success=True,
                message="Preferences updated successfully",
                preferences=preferences,
            )

        return app
