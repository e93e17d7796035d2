"""Settings read from the environment (and an optional .env file)."""

from __future__ import annotations

import functools
import os
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """The environment does not describe a usable configuration."""


@dataclass(frozen=True)
class LoggerConfig:
    log_level: str
    service_name: str
    log_path: str = ""


@dataclass(frozen=True)
class AppConfig:
    shutdown_timeout: timedelta


@dataclass(frozen=True)
class ServerConfig:
    jwt_key: str
    addr: str
    token_lifetime: timedelta
    log_queries: bool = False


@dataclass(frozen=True)
class DatabaseConfig:
    data_source: str
    path_to_migrations: str
    application_schema: str


@dataclass(frozen=True)
class ServiceConfig:
    notification_period: timedelta


@dataclass(frozen=True)
class Config:
    logger: LoggerConfig
    app: AppConfig
    server: ServerConfig
    database: DatabaseConfig
    service: ServiceConfig


_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_NANOS = 2**63 - 1

_BOOLS = {
    "1": True, "t": True, "T": True, "TRUE": True, "true": True, "True": True,
    "0": False, "f": False, "F": False, "FALSE": False, "false": False, "False": False,
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "1.5h" or "2h45m"."""
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ConfigError(f"invalid duration {text!r}")
    total = 0
    while rest:
        match = _COMPONENT.match(rest)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ConfigError(f"invalid duration {text!r}")
        if not unit:
            raise ConfigError(f"missing unit in duration {text!r}")
        if unit not in _NANOS_PER_UNIT:
            raise ConfigError(f"unknown unit {unit!r} in duration {text!r}")
        scale = _NANOS_PER_UNIT[unit]
        total += int(whole or "0") * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
        if total > _MAX_NANOS:
            raise ConfigError(f"invalid duration {text!r}")
        rest = rest[match.end():]
    micros = total // 1000
    return timedelta(microseconds=-micros if negative else micros)


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build the configuration from an environment mapping."""
    env = os.environ if environ is None else environ
    errors: list[str] = []

    def text(name: str, required: bool = True) -> str:
        if name in env:
            return env[name]
        if required:
            errors.append(f'required environment variable "{name}" is not set')
        return ""

    def duration(name: str) -> timedelta:
        raw = text(name)
        if not raw:
            return timedelta(0)
        try:
            return parse_duration(raw)
        except ConfigError as exc:
            errors.append(f"{name}: {exc}")
            return timedelta(0)

    def flag(name: str) -> bool:
        raw = text(name, required=False)
        if not raw:
            return False
        if raw not in _BOOLS:
            errors.append(f"{name}: invalid boolean {raw!r}")
            return False
        return _BOOLS[raw]

    config = Config(
        logger=LoggerConfig(
            log_level=text("LOG_LEVEL"),
            service_name=text("LOG_SERVICE_NAME"),
            log_path=text("LOG_PATH", required=False),
        ),
        app=AppConfig(shutdown_timeout=duration("APP_SHUTDOWN_TIMEOUT")),
        server=ServerConfig(
            jwt_key=text("SERVER_JWT_KEY"),
            addr=text("SERVER_ADDR"),
            token_lifetime=duration("SERVER_TOKEN_LIFE_TIME"),
            log_queries=flag("SERVER_LOG_QUERYS"),
        ),
        database=DatabaseConfig(
            data_source=text("DB_DATA_SOURCE"),
            path_to_migrations=text("DB_PATH_TO_MIGRATION"),
            application_schema=text("DB_APPLICATION_SCHEMA"),
        ),
        service=ServiceConfig(notification_period=duration("SERVICE_NOTIFICATION_PERIOD")),
    )
    if errors:
        raise ConfigError("; ".join(errors))
    return config


@functools.lru_cache(maxsize=None)
def get_config() -> Config:
    """Load .env from the working directory once and return the shared configuration."""
    load_dotenv(".env")
    return load_config()