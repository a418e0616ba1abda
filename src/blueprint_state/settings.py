from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import dotenv_values

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    state_dir_name: str = ".blueprint"
    lock_timeout_ms: int = 1_000
    lock_stale_ms: int = 30_000
    lock_poll_interval_ms: int = 50
    activity_input_timeout_ms: int = 4_000
    finalize_input_timeout_ms: int = 5_000
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "RuntimeSettings":
        """Build settings from ``BLUEPRINT_*`` environment variables.

        Args:
            env_file: Optional dotenv file. Values in it are used only when the
                process environment does not define the same variable.

        Returns:
            Validated settings.

        Raises:
            ValueError: If any variable is malformed or out of bounds.
        """
        env: dict[str, str] = {}
        if env_file is not None and env_file.is_file():
            env.update({key: value for key, value in dotenv_values(env_file).items() if value is not None})
        env.update(os.environ)

        return cls(
            state_dir_name=env.get("BLUEPRINT_STATE_DIR_NAME", ".blueprint"),
            lock_timeout_ms=_get_env_int(env, "BLUEPRINT_LOCK_TIMEOUT_MS", default=1_000, minimum=0),
            lock_stale_ms=_get_env_int(env, "BLUEPRINT_LOCK_STALE_MS", default=30_000, minimum=1_000),
            lock_poll_interval_ms=_get_env_int(env, "BLUEPRINT_LOCK_POLL_MS", default=50, minimum=1),
            activity_input_timeout_ms=_get_env_int(
                env, "BLUEPRINT_ACTIVITY_INPUT_TIMEOUT_MS", default=4_000, minimum=0
            ),
            finalize_input_timeout_ms=_get_env_int(
                env, "BLUEPRINT_FINALIZE_INPUT_TIMEOUT_MS", default=5_000, minimum=0
            ),
            log_level=env.get("BLUEPRINT_LOG_LEVEL", "WARNING"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        state_dir_name = self.state_dir_name.strip()
        if not state_dir_name:
            raise ValueError("BLUEPRINT_STATE_DIR_NAME must be non-empty")
        if state_dir_name in {".", ".."} or "/" in state_dir_name or os.sep in state_dir_name:
            raise ValueError(
                f"BLUEPRINT_STATE_DIR_NAME must be a single directory name, got: {state_dir_name!r}"
            )

        log_level = self.log_level.strip().upper()
        if log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                "BLUEPRINT_LOG_LEVEL must be one of: " + ", ".join(sorted(VALID_LOG_LEVELS))
            )

        return RuntimeSettings(
            state_dir_name=state_dir_name,
            lock_timeout_ms=self.lock_timeout_ms,
            lock_stale_ms=self.lock_stale_ms,
            lock_poll_interval_ms=self.lock_poll_interval_ms,
            activity_input_timeout_ms=self.activity_input_timeout_ms,
            finalize_input_timeout_ms=self.finalize_input_timeout_ms,
            log_level=log_level,
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


def _get_env_int(
    env: Mapping[str, str], name: str, default: int, minimum: int, maximum: int = 10_000_000
) -> int:
    """Parse an integer setting with bounds checking.

    Args:
        env: Merged environment mapping.
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = env.get(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
