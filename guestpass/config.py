"""Global configuration for GuestPass."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "environment": "production",
    "jwt_secret": "change-me-in-production",
    "admin_email": "admin",
    "admin_password": "admin123",
    "base_url": "http://localhost:8000",
    "brevo_api_key": "",
    "brevo_sender_email": "noreply@example.com",
    "brevo_sender_name": "Wedding Invitations",
    "email_subject": "Jay and Ankita's Wedding Invitation",
    "email_timeout_seconds": 15,
    "session_days": 7,
    "token_expiry_days": 30,
    "rate_limit_prune_minutes": 10,
    "enable_scheduler": True,
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "environment": str,
    "jwt_secret": str,
    "admin_email": str,
    "admin_password": str,
    "base_url": str,
    "brevo_api_key": str,
    "brevo_sender_email": str,
    "brevo_sender_name": str,
    "email_subject": str,
    "email_timeout_seconds": int,
    "session_days": int,
    "token_expiry_days": int,
    "rate_limit_prune_minutes": int,
    "enable_scheduler": bool,
    "app_host": str,
    "app_port": int,
}

# Unprefixed variable names used by existing deployments.
ENV_ALIASES: dict[str, str] = {
    "database_url": "DATABASE_URL",
    "environment": "APP_ENV",
    "jwt_secret": "JWT_SECRET",
    "admin_email": "ADMIN_EMAIL",
    "admin_password": "ADMIN_PASSWORD",
    "base_url": "BASE_URL",
    "brevo_api_key": "BREVO_API_KEY",
    "brevo_sender_email": "BREVO_SENDER_EMAIL",
    "brevo_sender_name": "BREVO_SENDER_NAME",
}

SECRET_KEYS = {"jwt_secret", "admin_password", "brevo_api_key"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_url: str
    environment: str
    jwt_secret: str
    admin_email: str
    admin_password: str
    base_url: str
    brevo_api_key: str
    brevo_sender_email: str
    brevo_sender_name: str
    email_subject: str
    email_timeout_seconds: int
    session_days: int
    token_expiry_days: int
    rate_limit_prune_minutes: int
    enable_scheduler: bool
    app_host: str
    app_port: int
    config_path: Path

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in {"dev", "development"}

    @property
    def session_lifetime(self) -> timedelta:
        return timedelta(days=self.session_days)

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(days=self.token_expiry_days)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"GUESTPASS_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    alias = ENV_ALIASES.get(key)
    if alias and os.environ.get(alias):
        return _cast_value(key, os.environ[alias])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(*, base_dir: Path, data_dir: str | Path | None):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    return resolved_base, resolved_data


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("GUESTPASS_BASE_DIR", Path.cwd()))
    env_config = os.getenv("GUESTPASS_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "guestpass.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("GUESTPASS_DATA_DIR", toml_config.get("data_dir")),
    )
    values = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    if not values["database_url"]:
        data_dir_value.mkdir(parents=True, exist_ok=True)
        values["database_url"] = f"sqlite:///{data_dir_value / 'guestpass.db'}"

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        config_path=config_path,
        **values,
    )
    return settings


def settings_as_dict(settings: Settings, *, mask_secrets: bool = True) -> dict[str, Any]:
    result: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        if mask_secrets and key in SECRET_KEYS:
            value = "********" if value else ""
        result[key] = value
    return result


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# GuestPass configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
