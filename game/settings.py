"""Runtime settings and logging setup for the game engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from errors import ConfigurationError

ENV_PREFIX = "TRADESIM_"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from exc


def _env_list(env: Mapping[str, str], key: str) -> Optional[Tuple[str, ...]]:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or not str(raw).strip():
        return None
    return tuple(part.strip() for part in str(raw).split(",") if part.strip())


@dataclass(frozen=True)
class GameSettings:
    min_keypoints: int = 3
    max_keypoints: int = 10
    # Bars of context handed to scoring rules on each side of a keypoint.
    history_bars: int = 50
    future_bars: int = 20
    decision_timeout_sec: int = 30
    session_timeout_minutes: int = 30
    async_scoring: bool = False
    scoring_workers: int = 2
    db_path: Optional[str] = None
    # None = every registered plugin.
    detectors: Optional[Tuple[str, ...]] = None
    scoring_rules: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.min_keypoints < 0:
            raise ConfigurationError(f"min_keypoints must be >= 0, got {self.min_keypoints}")
        if self.max_keypoints < 1 or self.max_keypoints < self.min_keypoints:
            raise ConfigurationError(
                f"max_keypoints must be >= max(1, min_keypoints), got {self.max_keypoints}"
            )
        for name in ("history_bars", "future_bars", "decision_timeout_sec", "session_timeout_minutes", "scoring_workers"):
            if int(getattr(self, name)) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> GameSettings:
    """
    Build GameSettings from TRADESIM_* variables. When `env` is not given the
    process environment is used, after loading `.env` (existing variables win).
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        env = os.environ
    return GameSettings(
        min_keypoints=_env_int(env, "MIN_KEYPOINTS", 3),
        max_keypoints=_env_int(env, "MAX_KEYPOINTS", 10),
        history_bars=_env_int(env, "HISTORY_BARS", 50),
        future_bars=_env_int(env, "FUTURE_BARS", 20),
        decision_timeout_sec=_env_int(env, "DECISION_TIMEOUT_SEC", 30),
        session_timeout_minutes=_env_int(env, "SESSION_TIMEOUT_MINUTES", 30),
        async_scoring=_env_flag(env.get(ENV_PREFIX + "ASYNC_SCORING"), False),
        scoring_workers=_env_int(env, "SCORING_WORKERS", 2),
        db_path=(env.get(ENV_PREFIX + "DB_PATH") or None),
        detectors=_env_list(env, "DETECTORS"),
        scoring_rules=_env_list(env, "SCORING_RULES"),
    )


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install one console handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)
