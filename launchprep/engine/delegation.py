"""
launchprep.engine.delegation — Setup Delegation State Machine
==============================================================

Pure module — transition table, expiry, and e-mail validation for a
setup delegation.  Persistence and side effects (progress reset, invite
e-mails, notifications) live in
:mod:`launchprep.services.delegation_service`.

::

    (none) ──create──▶ pending_invite ──accept──▶ accepted ──start──▶ in_progress
                             │                       │                   │
                             └───────cancel──────────┴──────cancel───────┤
                                                                         ▼
                          completed ◀──complete── in_progress        cancelled
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from launchprep.database.models import ACTIVE_DELEGATION_STATUSES, DelegationStatus
from launchprep.errors import InvalidTransition

__all__ = [
    "DelegationAction",
    "EXPIRED_DISPLAY_STATUS",
    "as_utc",
    "display_status",
    "is_active",
    "is_expired",
    "next_status",
    "normalize_delegate_email",
]

EXPIRED_DISPLAY_STATUS = "expired"


class DelegationAction(enum.StrEnum):
    ACCEPT = "accept"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


_TRANSITIONS: dict[tuple[DelegationStatus, DelegationAction], DelegationStatus] = {
    (DelegationStatus.PENDING_INVITE, DelegationAction.ACCEPT): DelegationStatus.ACCEPTED,
    (DelegationStatus.ACCEPTED, DelegationAction.START): DelegationStatus.IN_PROGRESS,
    (DelegationStatus.IN_PROGRESS, DelegationAction.COMPLETE): DelegationStatus.COMPLETED,
    (DelegationStatus.PENDING_INVITE, DelegationAction.CANCEL): DelegationStatus.CANCELLED,
    (DelegationStatus.ACCEPTED, DelegationAction.CANCEL): DelegationStatus.CANCELLED,
    (DelegationStatus.IN_PROGRESS, DelegationAction.CANCEL): DelegationStatus.CANCELLED,
}


def next_status(current: DelegationStatus | str, action: DelegationAction) -> DelegationStatus:
    """Return the status *action* leads to from *current*.

    Raises :class:`InvalidTransition` for any pair not in the table.
    """
    current = DelegationStatus(current)
    try:
        return _TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransition(
            f"Cannot {action.value} a delegation that is {current.value}."
        ) from None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(
    status: DelegationStatus | str,
    expires_at: datetime | None,
    now: datetime | None = None,
) -> bool:
    """A pending invite whose ``expires_at`` has passed.

    Only ``pending_invite`` can expire; once accepted the invite has done
    its job.
    """
    if DelegationStatus(status) != DelegationStatus.PENDING_INVITE or expires_at is None:
        return False
    now = now or datetime.now(UTC)
    return as_utc(expires_at) < now


def display_status(
    status: DelegationStatus | str,
    expires_at: datetime | None,
    now: datetime | None = None,
) -> str:
    """Status shown to users: the stored status, or ``expired``."""
    if is_expired(status, expires_at, now):
        return EXPIRED_DISPLAY_STATUS
    return DelegationStatus(status).value


def is_active(status: DelegationStatus | str) -> bool:
    return DelegationStatus(status) in ACTIVE_DELEGATION_STATUSES


def normalize_delegate_email(email: str, delegator_email: str) -> str:
    """Validate and lowercase a delegate e-mail address."""
    cleaned = (email or "").strip().lower()
    if not cleaned:
        raise InvalidTransition("Please enter an email address.")
    local, _, domain = cleaned.partition("@")
    if not local or not domain or " " in cleaned:
        raise InvalidTransition("Please enter a valid email address.")
    if cleaned == (delegator_email or "").strip().lower():
        raise InvalidTransition("You cannot invite yourself.")
    return cleaned
