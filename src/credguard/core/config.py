"""
CredGuard Configuration

Settings for the store, the rate limiter, sessions and secret hashing.
"""

from __future__ import annotations

from typing import Any, Mapping

import attrs
from attrs import field, validators

from credguard.core.crypto import DEFAULT_ITERATIONS
from credguard.core.types import SecretKind


def _positive(instance: Any, attribute: attrs.Attribute, value: Any) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, got {value!r}")


@attrs.define(frozen=True)
class WorkflowConfig:
    """
    Credential rotation workflow configuration.

    Attributes:
        database_path: SQLite database file, or ":memory:"
        store_timeout_seconds: Upper bound on waiting for the store
        max_attempts: Failed attempts per window before blocking
        window_seconds: Length of the sliding rate-limit window
        session_ttl_seconds: Idle time after which a session expires
        min_secret_length: Minimum length of a rotated password
        min_pin_length: Minimum length of a PIN at registration
        hash_iterations: PBKDF2 iteration count for new hashes
        login_kind: Secret kind verified at login and as the "old" secret
        rotating_kind: Secret kind replaced by a rotation
    """

    database_path: str = field(default=":memory:", validator=validators.instance_of(str))
    store_timeout_seconds: float = field(default=5.0, converter=float, validator=_positive)
    max_attempts: int = field(default=5, converter=int, validator=_positive)
    window_seconds: int = field(default=900, converter=int, validator=_positive)
    session_ttl_seconds: int = field(default=1800, converter=int, validator=_positive)
    min_secret_length: int = field(default=8, converter=int, validator=_positive)
    min_pin_length: int = field(default=4, converter=int, validator=_positive)
    hash_iterations: int = field(default=DEFAULT_ITERATIONS, converter=int, validator=_positive)
    login_kind: SecretKind = field(default=SecretKind.PIN, converter=SecretKind)
    rotating_kind: SecretKind = field(default=SecretKind.PASSWORD, converter=SecretKind)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "WorkflowConfig":
        """
        Build a config from a nested mapping.

        Accepted shape (every key optional):
            {
                "db": {"path": "auth.db", "timeout": 5},
                "rate_limit": {"max_attempts": 5, "window_seconds": 900},
                "session": {"ttl_seconds": 1800},
                "hashing": {"iterations": 310000},
                "policy": {"min_length": 8, "min_pin_length": 4},
            }

        Unknown keys are ignored.

        Raises:
            ValueError: If a value has the wrong type or range
        """
        db = mapping.get("db", {})
        rate_limit = mapping.get("rate_limit", {})
        session = mapping.get("session", {})
        hashing = mapping.get("hashing", {})
        policy = mapping.get("policy", {})

        kwargs: dict = {}
        if "path" in db:
            kwargs["database_path"] = db["path"]
        if "timeout" in db:
            kwargs["store_timeout_seconds"] = db["timeout"]
        if "max_attempts" in rate_limit:
            kwargs["max_attempts"] = rate_limit["max_attempts"]
        if "window_seconds" in rate_limit:
            kwargs["window_seconds"] = rate_limit["window_seconds"]
        if "ttl_seconds" in session:
            kwargs["session_ttl_seconds"] = session["ttl_seconds"]
        if "iterations" in hashing:
            kwargs["hash_iterations"] = hashing["iterations"]
        if "min_length" in policy:
            kwargs["min_secret_length"] = policy["min_length"]
        if "min_pin_length" in policy:
            kwargs["min_pin_length"] = policy["min_pin_length"]

        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}") from e
