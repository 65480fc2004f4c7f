"""Exception taxonomy for the relay core."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for failures raised by the relay core."""


class CredentialUnavailable(RelayError):
    """A user or service credential is missing, expired, or cannot be refreshed."""


class UpstreamUnavailable(RelayError):
    """The agent service could not be reached or rejected a request."""


class TurnTimeout(UpstreamUnavailable):
    """A chat turn did not finish within the configured time limit."""


class ConsentLoopExceeded(RelayError):
    """The agent kept issuing consent prompts past the allowed approval depth."""

    def __init__(self, depth: int) -> None:
        super().__init__(f"Consent prompts continued after {depth} approval(s)")
        self.depth = depth


class MalformedSignInCard(RelayError):
    """A sign-in card could not be turned into a link for the user."""


__all__ = [
    "RelayError",
    "CredentialUnavailable",
    "UpstreamUnavailable",
    "TurnTimeout",
    "ConsentLoopExceeded",
    "MalformedSignInCard",
]
