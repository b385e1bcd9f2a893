from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os

DEFAULT_DATA_DIR = "data"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    auto_approve: bool = False

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        raw_port = env.get("PORT", str(DEFAULT_PORT))
        try:
            port = int(raw_port)
        except ValueError as error:
            raise ValueError(f"PORT must be an integer, got {raw_port!r}") from error

        return AppConfig(
            data_dir=Path(env.get("FLEET_DATA_DIR", DEFAULT_DATA_DIR)),
            host=env.get("HOST", DEFAULT_HOST),
            port=port,
            auto_approve=env.get("FLEET_AUTO_APPROVE", "").strip().lower() in _TRUTHY,
        )
