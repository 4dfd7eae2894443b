"""Exceptions raised by the matching subsystem."""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for matching failures that callers can act on."""


class ParameterValidationError(MatchingError, ValueError):
    """Rejected input: bad weights, thresholds, context or match request.

    Attributes:
        weight_percentage: Rounded weight sum in percent, when the failure
            was a weight sum outside tolerance
    """

    def __init__(self, message: str, weight_percentage: int | None = None):
        super().__init__(message)
        self.weight_percentage = weight_percentage


class StaleCandidateError(MatchingError):
    """The candidate was claimed or consumed after it was scored."""

    refresh_required = True


class TransientFetchError(MatchingError):
    """Parameters or candidates could not be loaded. Safe to retry."""


class CandidateNotFoundError(MatchingError, LookupError):
    """A referenced user, donation, request or match does not exist."""
