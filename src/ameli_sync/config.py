from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, model_validator

from .portal.urls import DEFAULT_BASE_URL
from .state import DEFAULT_PAYEE_IDENTIFIERS


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so most users only need `.env`. YAML remains an optional override.
    """
    return {
        "ameli": {
            "identifier": os.getenv("AMELI_IDENTIFIER", ""),
            "secret": os.getenv("AMELI_SECRET", ""),
            "base_url": os.getenv("AMELI_BASE_URL", DEFAULT_BASE_URL),
            "bank_identifier": os.getenv("AMELI_BANK_IDENTIFIER", ""),
            "target_folder": os.getenv("AMELI_TARGET_FOLDER", "data/ameli"),
            "request_timeout_s": os.getenv("AMELI_REQUEST_TIMEOUT_S", "30"),
        },
        "save": {
            "date_delta_days": os.getenv("SAVE_DATE_DELTA_DAYS", "10"),
            "amount_delta": os.getenv("SAVE_AMOUNT_DELTA", "0.1"),
            "timeout_s": os.getenv("SAVE_TIMEOUT_S", "60"),
            "download_documents": _env_bool("SAVE_DOWNLOAD_DOCUMENTS", default=False),
        },
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/bills.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/sync.log"),
        },
    }


class AmeliConfig(BaseModel):
    """
    Credentials and target for the ameli portal (`https://assure.ameli.fr`).

    `identifier` is the social security number; the 2-digit key may be included, it is dropped at login.
    """

    identifier: str
    secret: str = Field(repr=False)
    base_url: str = DEFAULT_BASE_URL
    # Label used downstream to match bills with bank operations. Empty -> DEFAULT_PAYEE_IDENTIFIERS.
    bank_identifier: str = ""
    target_folder: str = "data/ameli"
    request_timeout_s: float = 30.0

    @model_validator(mode="after")
    def _validate(self) -> "AmeliConfig":
        self.identifier = "".join(self.identifier.split())
        if not self.identifier:
            raise ValueError("ameli.identifier is required (AMELI_IDENTIFIER)")
        if not self.secret:
            raise ValueError("ameli.secret is required (AMELI_SECRET)")

        base_url = (self.base_url or DEFAULT_BASE_URL).strip().rstrip("/")
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"ameli.base_url must be a full URL like '{DEFAULT_BASE_URL}'")
        self.base_url = base_url
        self.bank_identifier = self.bank_identifier.strip()
        return self

    @property
    def payee_identifiers(self) -> str:
        return self.bank_identifier or DEFAULT_PAYEE_IDENTIFIERS


class SaveConfig(BaseModel):
    date_delta_days: int = 10
    amount_delta: Decimal = Decimal("0.1")
    # Wall-clock budget (from run start) for handing bills to the store.
    timeout_s: float = 60.0
    download_documents: bool = False


class StateConfig(BaseModel):
    db_path: str = "data/bills.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/sync.log"


class AppConfig(BaseModel):
    ameli: AmeliConfig
    save: SaveConfig = SaveConfig()
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
