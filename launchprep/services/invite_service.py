"""
launchprep.services.invite_service — Setup-Admin Invite E-mails
================================================================

Sends the "you've been invited to set up <team>" e-mail through the
Resend HTTP API.  The signup link carries a single-use invite code.

Environment:
    RESEND_API_KEY — required to actually send; without it the sender
    logs a warning and reports failure so the user can resend later.
"""

from __future__ import annotations

import logging
import os
import secrets
from html import escape
from urllib.parse import urlencode

import httpx

from launchprep.config import LaunchPrepConfig
from launchprep.constants import INVITE_CODE_ALPHABET, INVITE_CODE_LENGTH

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    """Random code from an alphabet without look-alike characters (0/O, 1/I)."""
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def build_invite_email(
    cfg: LaunchPrepConfig, *, email: str, team_name: str, invite_code: str,
) -> dict:
    """Resend request body for a setup-admin invite."""
    signup_url = f"{cfg.app_url}/signup?" + urlencode({"invite": invite_code, "email": email})
    team = escape(team_name)
    html = (
        f"<h2>You're invited to set up {team}</h2>"
        f"<p>A teammate asked you to finish setting up {escape(cfg.product_name)} "
        f"for <strong>{team}</strong> as the team admin.</p>"
        f'<p><a href="{escape(signup_url)}">Create your account</a></p>'
        f"<p>Your invite code: <strong>{invite_code}</strong></p>"
    )
    return {
        "from": cfg.invite_from_email,
        "to": [email],
        "subject": f"You're invited to set up {team_name}",
        "html": html,
    }


class ResendInviteSender:
    """:class:`~launchprep.services.collaborators.InviteSender` over Resend."""

    def __init__(
        self,
        cfg: LaunchPrepConfig,
        *,
        api_key: str | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 10,
    ) -> None:
        self._cfg = cfg
        self._api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY", "")
        self._transport = transport or httpx.HTTPTransport(retries=1)
        self._timeout = timeout

    def send_delegation_invite(self, email: str, team_name: str, invite_code: str) -> bool:
        if not self._api_key:
            logger.warning("RESEND_API_KEY is not set; invite to %s not sent", email)
            return False

        body = build_invite_email(
            self._cfg, email=email, team_name=team_name, invite_code=invite_code,
        )
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(
                    RESEND_API_URL,
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError:
            logger.exception("Invite e-mail to %s failed", email)
            return False

        if resp.status_code >= 400:
            logger.error(
                "Resend rejected invite to %s: %d %s", email, resp.status_code, resp.text,
            )
            return False

        logger.info("Setup invite sent to %s for team %r", email, team_name)
        return True
