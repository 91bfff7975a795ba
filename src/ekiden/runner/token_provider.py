"""Runner registration tokens from the GitHub REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import aiohttp

from ekiden.config.models import CoordinatorConfig
from ekiden.exceptions import TokenError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class RegistrationToken:
    """One-time credential used to register a single ephemeral runner."""

    token: str = field(repr=False)
    expires_at: Optional[datetime] = None


def _parse_expiry(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable token expiry: %s", raw)
        return None


class TokenProvider:
    """HTTP client issuing registration tokens.

    One ``aiohttp`` session is shared by all workers; no retries happen here,
    retry policy belongs to the caller.
    """

    def __init__(
        self,
        coordinator: CoordinatorConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.coordinator = coordinator
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "TokenProvider":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.coordinator.api_token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": self.coordinator.api_version,
        }

    async def get_registration_token(self) -> RegistrationToken:
        """Request a new runner registration token."""
        logger.info("Requesting registration token from GitHub")
        session = await self._ensure_session()
        try:
            async with session.post(
                self.coordinator.registration_endpoint, headers=self._headers
            ) as resp:
                raw = await resp.read()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TokenError(f"request failed: {exc}") from exc

        if status != 201:
            body = raw.decode("utf-8", errors="replace")
            raise TokenError(f"GitHub API error (status {status}): {body[:500]}")

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise TokenError(f"failed to parse response: {exc}") from exc

        token = payload.get("token") if isinstance(payload, dict) else None
        if not token or not isinstance(token, str):
            raise TokenError("empty token in response")

        expires_at = _parse_expiry(payload.get("expires_at"))
        logger.info(
            "Registration token obtained",
            extra={"expires_at": expires_at.isoformat() if expires_at else None},
        )
        return RegistrationToken(token=token, expires_at=expires_at)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


__all__ = ["DEFAULT_REQUEST_TIMEOUT", "RegistrationToken", "TokenProvider"]
