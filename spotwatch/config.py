from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from spotwatch.domain import ParseError, ProgramConfig
from spotwatch.site_client import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    interval_seconds: int
    ntfy_endpoint: str
    programs: tuple[ProgramConfig, ...]

    base_url: str = DEFAULT_BASE_URL
    request_timeout_seconds: float = 30.0

    # Total attempts per program per cycle; 1 means no retry.
    poll_retry_attempts: int = 1


def _parse_programs(raw: Any) -> tuple[ProgramConfig, ...]:
    if not isinstance(raw, list):
        raise ParseError("program_ids must be an array of {id, name} tables")
    if not raw:
        logger.warning("program_ids is empty; cycles will have nothing to poll")

    seen: set[str] = set()
    result: list[ProgramConfig] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ParseError(f"Invalid program_ids entry: {item!r}")
        program_id = str(item.get("id", "")).strip()
        name = str(item.get("name", "")).strip()
        if not program_id or not name:
            raise ParseError(f"program_ids entry needs both id and name: {item!r}")

        if program_id in seen:
            continue
        seen.add(program_id)
        result.append(ProgramConfig(id=program_id, name=name))

    return tuple(result)


def _positive_int(data: dict[str, Any], name: str, default: int | None = None) -> int:
    if name not in data:
        if default is None:
            raise ParseError(f"Missing required config value: {name}")
        return default
    value = data[name]
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ParseError(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_str(data: dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"Missing required config value: {name}")
    return value.strip()


def parse_settings(data: dict[str, Any]) -> Settings:
    timeout = data.get("request_timeout_seconds", 30.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ParseError(f"request_timeout_seconds must be a positive number, got {timeout!r}")

    base_url = data.get("base_url", DEFAULT_BASE_URL)
    if not isinstance(base_url, str) or not base_url.strip():
        raise ParseError("base_url must be a non-empty string")

    return Settings(
        interval_seconds=_positive_int(data, "interval_seconds"),
        ntfy_endpoint=_require_str(data, "ntfy_endpoint"),
        programs=_parse_programs(data.get("program_ids")),
        base_url=base_url.strip().rstrip("/"),
        request_timeout_seconds=float(timeout),
        poll_retry_attempts=_positive_int(data, "poll_retry_attempts", default=1),
    )


def load_settings(config_path: str | None = None, dotenv_path: str | None = None) -> Settings:
    # .env may point at another config file; it never overrides real env vars.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    path = config_path or os.getenv("SPOTWATCH_CONFIG", "config.toml")
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ParseError(f"Config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ParseError(f"Invalid TOML in {path}: {e}") from e

    return parse_settings(data)
