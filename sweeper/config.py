from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


def _bool_from_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


@dataclass(frozen=True)
class SweeperSettings:
    poll_interval_seconds: int = 300
    run_only_once: bool = False
    send_reminders: bool = True

    def copy(self, **updates) -> "SweeperSettings":
        return replace(self, **updates)


def load_from_environment() -> SweeperSettings:
    return SweeperSettings(
        poll_interval_seconds=_int_from_env(os.getenv("SWEEP_INTERVAL_SECONDS"), 300),
        run_only_once=_bool_from_env(os.getenv("SWEEP_ONCE"), False),
        send_reminders=_bool_from_env(os.getenv("SWEEP_SEND_REMINDERS"), True),
    )


@lru_cache(maxsize=1)
def load_config(dotenv_path: Optional[str] = None) -> SweeperSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        default_path = pathlib.Path(".env")
        if default_path.exists():
            load_dotenv(default_path)
    return load_from_environment()
