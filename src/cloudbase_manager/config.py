from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Credentials:
    secret_id: str
    secret_key: str
    token: str | None = None
    proxy: str | None = None


@dataclass(frozen=True)
class ManagerConfig:
    credentials: Credentials
    env_id: str | None = None
    region: str | None = None
    internal_endpoint: bool = False
    timeout_seconds: float = 15.0
    retry_delay_seconds: float = 0.5
    poll_interval_seconds: float = 1.0


def make_credentials(
    secret_id: str | None,
    secret_key: str | None,
    token: str | None = None,
    proxy: str | None = None,
) -> Credentials:
    if bool(secret_id) != bool(secret_key):
        raise ConfigError("secretId and secretKey must be a pair")
    if not secret_id:
        raise ConfigError("secretId and secretKey are required")
    return Credentials(
        secret_id=secret_id,
        secret_key=secret_key,
        token=token or None,
        proxy=proxy or None,
    )


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false).")


def _parse_seconds_env(name: str, default: str, *, allow_zero: bool = False) -> float:
    raw = os.getenv(name, default).strip()
    try:
        seconds = float(raw)
        if seconds < 0 or (seconds == 0 and not allow_zero):
            raise ValueError
    except ValueError as exc:
        qualifier = "non-negative" if allow_zero else "positive"
        raise ConfigError(f"{name} must be a {qualifier} number.") from exc
    return seconds


def load_config() -> ManagerConfig:
    secret_id = _optional_env("TENCENTCLOUD_SECRETID")
    secret_key = _optional_env("TENCENTCLOUD_SECRETKEY")
    if secret_id is None and secret_key is None:
        raise ConfigError(
            "Missing required environment variables: TENCENTCLOUD_SECRETID, "
            "TENCENTCLOUD_SECRETKEY. Set both before creating a manager."
        )
    credentials = make_credentials(
        secret_id,
        secret_key,
        token=_optional_env("TENCENTCLOUD_SESSIONTOKEN"),
        proxy=_optional_env("TCB_PROXY"),
    )

    return ManagerConfig(
        credentials=credentials,
        env_id=_optional_env("TCB_ENV_ID"),
        region=_optional_env("TENCENTCLOUD_REGION"),
        internal_endpoint=_parse_bool_env("TCB_INTERNAL_ENDPOINT", False),
        timeout_seconds=_parse_seconds_env("TCB_TIMEOUT_SECONDS", "15"),
        retry_delay_seconds=_parse_seconds_env("TCB_RETRY_DELAY_SECONDS", "0.5", allow_zero=True),
        poll_interval_seconds=_parse_seconds_env("TCB_POLL_INTERVAL_SECONDS", "1", allow_zero=True),
    )
