"""Immutable authenticator configuration.

A flow captures one :class:`AuthenticatorConfig` at entry and reads only from
it, so concurrent flows never observe each other's changes.  Use
:meth:`AuthenticatorConfig.with_overrides` to derive a variant.

Config file format (JSON)::

    {
      "remote_name": "Example Portal",
      "prompt_text": "{principal} wants to sign in to {remoteName} via {hostname}.",
      "authorize_text": "Sign in",
      "debug": false,
      "timeout_seconds": 120
    }

The camelCase spellings used by the directory API (``remoteName``,
``promptText``, ``authorizeText``) are accepted as aliases.
"""
import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from keyauth_core.errors import ConfigError


DEFAULT_REMOTE_NAME = "LogonBox Authenticator API"
DEFAULT_PROMPT_TEXT = (
    "{principal} wants to authenticate from {remoteName} using your {hostname} credentials."
)
DEFAULT_AUTHORIZE_TEXT = "Authorize"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_CHALLENGE_SIZE = 128

_ALIASES = {
    "remoteName": "remote_name",
    "promptText": "prompt_text",
    "authorizeText": "authorize_text",
    "timeoutSeconds": "timeout_seconds",
    "challengeSize": "challenge_size",
}


@dataclass(frozen=True)
class AuthenticatorConfig:
    """Settings read by :class:`~keyauth_core.auth.client.AuthenticatorClient`.

    Parameters
    ----------
    remote_name:
        Identifies the relying party in prompts shown by the signer.
    prompt_text:
        Template with ``{principal}``, ``{remoteName}`` and ``{hostname}``
        placeholders.
    authorize_text:
        Button label shown to the signer.
    debug:
        Enables verbose tracing of intermediate state.  Never changes outcomes.
    timeout_seconds:
        Deadline for one authentication flow.  ``None`` waits forever.
    challenge_size:
        Number of random bytes in a generated challenge.
    """

    remote_name: str = DEFAULT_REMOTE_NAME
    prompt_text: str = DEFAULT_PROMPT_TEXT
    authorize_text: str = DEFAULT_AUTHORIZE_TEXT
    debug: bool = False
    timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS
    challenge_size: int = DEFAULT_CHALLENGE_SIZE

    def __post_init__(self) -> None:
        for name in ("remote_name", "prompt_text", "authorize_text"):
            if not isinstance(getattr(self, name), str):
                raise ConfigError(f"{name} must be a string, got {getattr(self, name)!r}")
        if not isinstance(self.debug, bool):
            raise ConfigError(f"debug must be a boolean, got {self.debug!r}")
        if self.timeout_seconds is not None and (
            isinstance(self.timeout_seconds, bool)
            or not isinstance(self.timeout_seconds, (int, float))
            or self.timeout_seconds <= 0
        ):
            raise ConfigError(
                f"timeout_seconds must be a positive number or null, got {self.timeout_seconds!r}"
            )
        if (
            isinstance(self.challenge_size, bool)
            or not isinstance(self.challenge_size, int)
            or self.challenge_size <= 0
        ):
            raise ConfigError(f"challenge_size must be a positive integer, got {self.challenge_size!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthenticatorConfig":
        """Build a config from a plain dict, accepting camelCase aliases.

        Raises
        ------
        ConfigError
            If *data* contains unknown keys or values of the wrong type.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown configuration key: {key!r}")
            if name in kwargs:
                raise ConfigError(f"Configuration key given twice: {name!r}")
            kwargs[name] = value
        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> "AuthenticatorConfig":
        """Return a copy with *changes* applied."""
        return dataclasses.replace(self, **changes)


def load_config(path: Path) -> AuthenticatorConfig:
    """Read an :class:`AuthenticatorConfig` from the JSON file at *path*."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return AuthenticatorConfig.from_dict(data)
