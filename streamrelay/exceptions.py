"""
Exception hierarchy for streamrelay.

Everything raised by the relay derives from RelayError so callers can catch
broadly or specifically depending on context.
"""


class RelayError(Exception):
    """Base class for all streamrelay exceptions."""


class ResolutionError(RelayError):
    """Raised when a page URL cannot be turned into a stream URL."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PublishError(RelayError):
    """Raised when the mapping cannot be written to the remote store."""


class PublishConflictError(PublishError):
    """
    The remote file changed between the revision read and the write.

    Attributes
    ----------
    expected_sha : revision token the write was conditioned on (None = create).
    """

    def __init__(self, expected_sha: str | None, detail: str = "") -> None:
        self.expected_sha = expected_sha
        msg = f"Remote file changed since revision {expected_sha or '<none>'}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class DecodeError(RelayError):
    """Raised for malformed public tokens or tokens for unknown ids."""


class CredentialError(RelayError):
    """Raised when an upload batch carries the wrong password."""
