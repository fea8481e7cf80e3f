from __future__ import annotations

import logging
from typing import Optional

import requests


class SupabaseAuthClient:
    """Resolves a Supabase access token to the internal user id."""

    def __init__(
        self,
        *,
        url: str,
        service_role_key: str,
        timeout_seconds: int = 8,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._logger = logging.getLogger(self.__class__.__name__)

    def get_user_id(self, access_token: str) -> Optional[str]:
        if not self._url or not access_token:
            return None
        try:
            resp = self._session.get(
                f"{self._url}/auth/v1/user",
                headers={
                    "apikey": self._service_role_key,
                    "Authorization": f"Bearer {access_token}",
                },
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            self._logger.warning("Token verification failed: %s", exc)
            return None

        if resp.status_code != 200:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        user_id = data.get("id") if isinstance(data, dict) else None
        return str(user_id) if user_id else None
