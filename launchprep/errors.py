"""
launchprep.errors — Engine Exception Taxonomy
==============================================

Every error the engine raises is actionable: the caller retries, resends
an invite, or cancels and restarts.  None of them leave partially written
progress behind.
"""

from __future__ import annotations


class LaunchPrepError(Exception):
    """Base class for all engine errors."""


class TransientIOError(LaunchPrepError):
    """A counter fetch or persistence write failed.

    The unit of work has been rolled back; retry it as a whole.
    """


class InvalidTransition(LaunchPrepError):
    """The requested state change is not allowed from the current state.

    The underlying record is left untouched.
    """


class ExpiredDelegation(InvalidTransition):
    """A pending invite was acted on after its ``expires_at``."""


class UnknownCounters(LaunchPrepError):
    """Fuel counters could not be obtained for a team.

    Distinct from "zero counters": callers must skip reconciliation
    instead of treating the team as level 0.
    """
