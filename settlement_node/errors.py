"""Exception taxonomy for the settlement pipeline.

Only failures that the caller must act on are exceptions. Duplicate claims,
anti-cheat flags and distribution preconditions are ordinary results.
"""
from __future__ import annotations


class SettlementError(Exception):
    """Base class for pipeline errors."""


class VerificationFailure(SettlementError):
    """A claimed transaction did not perform the expected action. Never retried."""

    def __init__(self, reason: str, detail: str | None = None):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class TransientInfraFailure(SettlementError):
    """RPC or database unavailable after bounded retries."""


class UnknownFamily(SettlementError):
    def __init__(self, name: str):
        super().__init__(f"unknown leaderboard family: {name}")
        self.name = name


class InvalidSubmission(SettlementError):
    """Client input that cannot be accepted (bad fields, unknown entry, replays)."""

    def __init__(self, reason: str, status_code: int = 400):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code
