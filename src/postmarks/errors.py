"""Error taxonomy shared by the store, the orchestrator and the pipeline.

The orchestrator is the only layer that acts on these classes:

* :class:`TransientError`: retried with backoff up to the step's attempt budget.
* :class:`TerminalError`: never retried; the run is marked ``failed``.
* :class:`InvariantViolation`: programmer error; the run is marked
  ``failed`` and the exception is re-raised so operators see it.
"""

from __future__ import annotations


class PostmarksError(Exception):
    """Base exception for postmarks."""


class TransientError(PostmarksError):
    """A failure that may succeed if the step is attempted again."""


class TerminalError(PostmarksError):
    """A failure that retrying cannot fix."""


class DuplicateURLError(TerminalError):
    """The owner already has a link with this URL."""

    def __init__(self, owner: str, url: str) -> None:
        super().__init__(f"{url} already exists for {owner}")
        self.owner = owner
        self.url = url


class LinkNotFoundError(TerminalError):
    """No link with the given id exists for the owner."""

    def __init__(self, owner: str, link_id: int) -> None:
        super().__init__(f"link {link_id} not found for {owner}")
        self.owner = owner
        self.link_id = link_id


class ContentFetchError(TerminalError):
    """The page could not be fetched or had no usable body."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to get content for {url}: {reason}")
        self.url = url
        self.reason = reason


class EmptyEmbeddingError(TerminalError):
    """The embedding service returned no vector."""


class StepRetriesExhaustedError(TerminalError):
    """A step kept failing transiently until its attempt budget ran out."""

    def __init__(self, step_name: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"step {step_name!r} failed after {attempts} attempts: {type(last_error).__name__}: {last_error}"
        )
        self.step_name = step_name
        self.attempts = attempts
        self.last_error = last_error


class InvariantViolation(PostmarksError):
    """Programmer error: an internal invariant does not hold."""


class NotificationError(PostmarksError):
    """The notifier could not deliver a message."""
