from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from .logging import get_logger

logger = get_logger(__name__)

ENV_BOT_TOKEN = "TELEGRAM_BOT_TOKEN"
ENV_ALLOWED_USER_IDS = "ALLOWED_USER_IDS"
ENV_RATE_LIMIT_MAX = "RATE_LIMIT_MAX"
ENV_RATE_LIMIT_WINDOW = "RATE_LIMIT_WINDOW"
ENV_MAX_PROMPT_LENGTH = "MAX_PROMPT_LENGTH"
ENV_CHUNK_SIZE = "CHUNK_SIZE"
ENV_NETWORK_FAMILY = "NETWORK_FAMILY"
ENV_OLLAMA_URL = "OLLAMA_URL"
ENV_OLLAMA_MODEL = "OLLAMA_MODEL"

LOCAL_CONFIG_NAME = Path(".ollabridge") / "ollabridge.toml"
HOME_CONFIG_PATH = Path.home() / ".ollabridge" / "ollabridge.toml"

DEFAULT_RATE_LIMIT_MAX = 10
DEFAULT_RATE_LIMIT_WINDOW_S = 60.0
DEFAULT_MAX_PROMPT_LENGTH = 4096
DEFAULT_CHUNK_SIZE = 4000
DEFAULT_NETWORK_FAMILY = "ipv4"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "gemma3:1b"

NetworkFamily = Literal["ipv4", "ipv6", "any"]
NETWORK_FAMILIES: tuple[str, ...] = ("ipv4", "ipv6", "any")

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class BridgeSettings:
    bot_token: str
    allowed_user_ids: frozenset[int] = frozenset()
    rate_limit_max: int = DEFAULT_RATE_LIMIT_MAX
    rate_limit_window_s: float = DEFAULT_RATE_LIMIT_WINDOW_S
    max_prompt_length: int = DEFAULT_MAX_PROMPT_LENGTH
    chunk_size: int = DEFAULT_CHUNK_SIZE
    network_family: NetworkFamily = DEFAULT_NETWORK_FAMILY
    ollama_url: str = DEFAULT_OLLAMA_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config_file(path: str | Path | None = None) -> tuple[dict, Path | None]:
    """Read the TOML config file.

    An explicit path must exist. Without one, the local and home candidates are
    tried in order and an empty config is returned when neither is present.
    """
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate
    return {}, None


def parse_duration(value: str) -> float | None:
    """Parse `90`, `1.5`, `500ms`, `60s`, `1m30s` or `2h` into seconds."""
    text = value.strip().lower()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            return None
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        return None
    return total


def parse_user_ids(value: Any) -> frozenset[int]:
    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        return frozenset()
    ids: set[int] = set()
    for item in items:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            ids.add(item)
            continue
        text = str(item).strip()
        if not text:
            continue
        try:
            ids.add(int(text))
        except ValueError:
            logger.warning("config.invalid_user_id", value=text)
    return frozenset(ids)


def _lookup(
    env: Mapping[str, str], env_name: str, config: Mapping[str, Any], key: str
) -> Any:
    env_value = env.get(env_name)
    if env_value is not None and env_value.strip():
        return env_value.strip()
    return config.get(key)


def _positive_int(raw: Any, *, name: str, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = None
    if value is None or value <= 0:
        logger.warning("config.invalid_value", setting=name, value=str(raw))
        return default
    return value


def _positive_duration(raw: Any, *, name: str, default: float) -> float:
    if raw is None:
        return default
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, (int, float)):
        value = float(raw)
    else:
        value = parse_duration(str(raw))
    if value is None or value <= 0:
        logger.warning("config.invalid_value", setting=name, value=str(raw))
        return default
    return value


def _string(raw: Any, *, default: str) -> str:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return default


def _network_family(raw: Any) -> NetworkFamily:
    if raw is None:
        return DEFAULT_NETWORK_FAMILY
    value = str(raw).strip().lower()
    if value not in NETWORK_FAMILIES:
        logger.warning("config.invalid_value", setting="network_family", value=value)
        return DEFAULT_NETWORK_FAMILY
    return value  # type: ignore[return-value]


def get_bot_token(
    env: Mapping[str, str], config: Mapping[str, Any], config_path: Path | None
) -> str:
    """Get bot token from environment variable or config file.

    Environment variable TELEGRAM_BOT_TOKEN takes precedence over config file.
    """
    env_token = env.get(ENV_BOT_TOKEN)
    if env_token and env_token.strip():
        return env_token.strip()

    token = config.get("bot_token")
    if token is None:
        where = f" or add `bot_token` to {config_path}" if config_path else ""
        raise ConfigError(f"Missing bot token. Set {ENV_BOT_TOKEN}{where}.")
    if not isinstance(token, str) or not token.strip():
        raise ConfigError(
            f"Invalid `bot_token` in {config_path}; expected a non-empty string."
        )
    return token.strip()


def load_settings(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> BridgeSettings:
    if env is None:
        env = os.environ
    config, config_path = load_config_file(path)

    return BridgeSettings(
        bot_token=get_bot_token(env, config, config_path),
        allowed_user_ids=parse_user_ids(
            _lookup(env, ENV_ALLOWED_USER_IDS, config, "allowed_user_ids") or ()
        ),
        rate_limit_max=_positive_int(
            _lookup(env, ENV_RATE_LIMIT_MAX, config, "rate_limit_max"),
            name="rate_limit_max",
            default=DEFAULT_RATE_LIMIT_MAX,
        ),
        rate_limit_window_s=_positive_duration(
            _lookup(env, ENV_RATE_LIMIT_WINDOW, config, "rate_limit_window"),
            name="rate_limit_window",
            default=DEFAULT_RATE_LIMIT_WINDOW_S,
        ),
        max_prompt_length=_positive_int(
            _lookup(env, ENV_MAX_PROMPT_LENGTH, config, "max_prompt_length"),
            name="max_prompt_length",
            default=DEFAULT_MAX_PROMPT_LENGTH,
        ),
        chunk_size=_positive_int(
            _lookup(env, ENV_CHUNK_SIZE, config, "chunk_size"),
            name="chunk_size",
            default=DEFAULT_CHUNK_SIZE,
        ),
        network_family=_network_family(
            _lookup(env, ENV_NETWORK_FAMILY, config, "network_family")
        ),
        ollama_url=_string(
            _lookup(env, ENV_OLLAMA_URL, config, "ollama_url"),
            default=DEFAULT_OLLAMA_URL,
        ).rstrip("/"),
        ollama_model=_string(
            _lookup(env, ENV_OLLAMA_MODEL, config, "ollama_model"),
            default=DEFAULT_OLLAMA_MODEL,
        ),
    )
