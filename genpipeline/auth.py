from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import timezone
from pathlib import Path
from typing import Any, Callable

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from .errors import AuthError

LOGGER = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
# Refresh a little before expiry so a token never lapses mid-request.
EXPIRY_MARGIN_SECONDS = 300


class TokenProvider:
    async def get_token(self) -> str:
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    def __init__(self, token: str) -> None:
        if not token or not token.strip():
            raise AuthError("Static access token is empty.")
        self._token = token.strip()

    async def get_token(self) -> str:
        return self._token


class ServiceAccountTokenProvider(TokenProvider):
    """
    Exchanges a service-account key file for a short-lived bearer token.

    The refresh call is blocking (google-auth uses requests), so it runs in a
    worker thread. Tokens are cached until shortly before they expire.
    """

    def __init__(
        self,
        credentials_path: Path | str | None,
        scopes: tuple[str, ...] = (CLOUD_PLATFORM_SCOPE,),
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.credentials_path = Path(credentials_path) if credentials_path else None
        self.scopes = scopes
        self._clock = clock
        self._credentials: Any | None = None
        self._lock: asyncio.Lock | None = None

    def _load_credentials(self) -> Any:
        if self.credentials_path is None:
            raise AuthError("GOOGLE_APPLICATION_CREDENTIALS environment variable is required.")
        if not self.credentials_path.is_file():
            raise AuthError(f"Service account file not found: {self.credentials_path}")
        try:
            info = json.loads(self.credentials_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise AuthError(f"Service account file is not valid JSON: {self.credentials_path} ({exc})") from exc
        if not isinstance(info, dict) or info.get("type") != "service_account":
            raise AuthError(f"Credential file is not a service account key: {self.credentials_path}")
        try:
            return service_account.Credentials.from_service_account_info(info, scopes=list(self.scopes))
        except (ValueError, KeyError) as exc:
            raise AuthError(f"Malformed service account key: {exc}") from exc

    def _token_is_fresh(self) -> bool:
        creds = self._credentials
        if creds is None or not creds.token:
            return False
        expiry = getattr(creds, "expiry", None)
        if expiry is None:
            return True
        # google-auth stores expiry as a naive UTC datetime.
        expires_at = _utc_timestamp(expiry)
        return expires_at - self._clock() > EXPIRY_MARGIN_SECONDS

    def _refresh(self) -> str:
        if self._credentials is None:
            self._credentials = self._load_credentials()
        try:
            self._credentials.refresh(Request())
        except google.auth.exceptions.GoogleAuthError as exc:
            raise AuthError(f"Token endpoint rejected the service account: {exc}") from exc
        token = self._credentials.token
        if not token:
            raise AuthError("Failed to obtain access token from service account.")
        LOGGER.info("Obtained access token for %s", getattr(self._credentials, "service_account_email", "service account"))
        return token

    async def get_token(self) -> str:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._token_is_fresh():
                return self._credentials.token
            return await asyncio.to_thread(self._refresh)


def _utc_timestamp(value: Any) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def token_provider_from_config(config: Any) -> TokenProvider:
    if config.access_token:
        return StaticTokenProvider(config.access_token)
    return ServiceAccountTokenProvider(config.credentials_path)
