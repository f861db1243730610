"""Outbound notification channel for verification and reset codes."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

from authcore.core.security import mask_email

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_verification(self, email: str, token: str) -> None: ...

    def send_reset(self, email: str, token: str) -> None: ...


class LogNotifier:
    """
    Development notifier: builds the link and logs that it was sent.

    Real delivery (SMTP, SES, SMS) plugs in behind the same two methods.
    """

    def __init__(self, app_url: str) -> None:
        self.app_url = app_url.rstrip("/")

    def _link(self, path: str, token: str) -> str:
        return f"{self.app_url}{path}?{urlencode({'token': token})}"

    def send_verification(self, email: str, token: str) -> None:
        link = self._link("/auth/verify-email", token)
        logger.info("Verification email queued for %s (%d-char link)", mask_email(email), len(link))

    def send_reset(self, email: str, token: str) -> None:
        link = self._link("/auth/reset-password", token)
        logger.info("Password reset email queued for %s (%d-char link)", mask_email(email), len(link))
