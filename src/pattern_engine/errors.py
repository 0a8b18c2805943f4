"""Exception hierarchy for the pattern engine.

A regex chain that yields nothing is not an error (the selector returns an
empty result), and a value that fails normalization is returned as a
``NormalizationFailure`` value. Everything below is for conditions that a caller
or an internal retry loop has to act on.
"""

from __future__ import annotations


class PatternEngineError(Exception):
    """Base class for engine errors."""


class RepositoryUnavailable(PatternEngineError):
    """Pattern or venue store could not be reached.

    Fatal for the current extraction only. Extraction never writes to the
    stores, so a retry of the whole post is always safe.
    """

    retryable = True

    def __init__(self, message: str, *, store: str | None = None) -> None:
        super().__init__(message)
        self.store = store


class ConcurrentUpdateConflict(PatternEngineError):
    """A compare-and-set on a pattern's counters lost the race."""

    def __init__(self, pattern_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Pattern {pattern_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.pattern_id = pattern_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class UpdateRetriesExhausted(PatternEngineError):
    """Counter update kept conflicting beyond the configured retry budget."""


class PatternNotFound(PatternEngineError, KeyError):
    """No pattern with the requested id."""


class InvalidPatternError(PatternEngineError, ValueError):
    """Pattern definition is unusable (bad regex, duplicate, no capture group)."""


class VenueNotFound(PatternEngineError, KeyError):
    """No known venue with the requested name."""


class SuggestionNotFound(PatternEngineError, KeyError):
    """No pattern suggestion with the requested id."""


class CollaboratorError(PatternEngineError):
    """The external AI collaborator failed."""


class CollaboratorTimeout(CollaboratorError):
    """The external AI collaborator did not answer within its time budget."""
