"""Exception taxonomy shared by every keyauth component.

Only malformed or inconsistent state raises.  A signer that declines, or a
principal whose every candidate key was declined, produces an ordinary
:class:`~keyauth_core.auth.response.AuthenticatorResponse` whose ``verify()``
is ``False``.
"""


class AuthenticatorError(RuntimeError):
    """Base class for all keyauth errors."""


class NoSuitableKey(AuthenticatorError, LookupError):
    """Raised when a default key is required but the candidate set is empty."""


class KeyNotFound(AuthenticatorError, LookupError):
    """Raised when no candidate key of a principal matches a fingerprint."""


class SigningDenied(AuthenticatorError):
    """Raised when the signer declined or the directory reported failure.

    The candidate-key loop recovers from it; it only reaches callers of the
    deferred-delivery path.
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message or "Signing request was denied")
        self.message = message


class MalformedReply(AuthenticatorError, ValueError):
    """Raised when wire data cannot be decoded or a success carries no signature."""


class UnsupportedAlgorithm(AuthenticatorError):
    """Raised when a key type has no verification strategy."""


class DirectoryError(AuthenticatorError):
    """Raised by a directory implementation when a lookup or signing call fails."""


class DeadlineExceeded(AuthenticatorError):
    """Raised when the per-flow deadline elapsed before a directory call."""


class ConfigError(AuthenticatorError, ValueError):
    """Raised when configuration values are missing, unknown, or of the wrong type."""


class ReplayAttackError(AuthenticatorError):
    """Raised when a pending request is completed a second time."""
