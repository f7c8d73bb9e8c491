from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import streamlit as st

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "FISHFARM_DATA_DIR"
SESSION_DATA_DIR = "fishfarm_data_dir"
LOG_FILE_NAME = "fishfarm.log"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    currency: str = "KES"
    retry_attempts: int = 3
    retry_delay_seconds: float = 0.5
    log_level: str = "INFO"

    @property
    def retry(self) -> dict:
        """Keyword arguments for the store-writing services."""
        return {"attempts": self.retry_attempts, "retry_delay": self.retry_delay_seconds}


def _default_data_dir() -> Path:
    return Path.home() / ".fishfarm"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    cfg = data_dir / CONFIG_FILE_NAME
    payload = {"data_dir": str(data_dir)}
    cfg.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # Update session for immediate effect
    st.session_state[SESSION_DATA_DIR] = str(data_dir)


def resolve_data_dir(session_value: str | None = None, env: dict | None = None) -> Path:
    # Priority order:
    # 1) Session state (set via Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    env = os.environ if env is None else env
    if session_value:
        return Path(session_value).expanduser().resolve()
    if env.get(ENV_DATA_DIR):
        return Path(env[ENV_DATA_DIR]).expanduser().resolve()
    default_dir = _default_data_dir()
    persisted = _load_persisted_settings(default_dir)
    return Path(persisted.get("data_dir", default_dir)).expanduser().resolve()


def build_settings(data_dir: Path, **overrides) -> Settings:
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    return Settings(data_dir=data_dir, db_path=data_dir / "app.db", **overrides)


@st.cache_resource
def get_settings() -> Settings:
    data_dir = resolve_data_dir(st.session_state.get(SESSION_DATA_DIR))
    settings = build_settings(data_dir)
    init_logging(settings)
    return settings


def init_logging(settings: Settings) -> None:
    """Configure logging to console and a file in the data directory."""
    root = logging.getLogger()
    if any(getattr(h, "_fishfarm", False) for h in root.handlers):
        return

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        logging.FileHandler(settings.data_dir / LOG_FILE_NAME, encoding="utf-8"),
    ]
    for h in handlers:
        h.setFormatter(formatter)
        h._fishfarm = True  # type: ignore[attr-defined]
        root.addHandler(h)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    logging.getLogger(__name__).info("Logging initialized. DB at %s", settings.db_path)
