"""
config.py — Persisted settings for twitch-scrapurr
"""

import logging
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from platformdirs import user_config_dir, user_log_dir

APP_NAME = "twitch-scrapurr"

logger = logging.getLogger("twitch_scrapurr")

DEFAULT_CONFIG = """\
output_folder = ""
convert_to_mp4 = true
generate_contact_sheet = true
use_ffmpeg_convert = true
check_interval = 60
discord_webhook_url = ""
twitch_client_id = ""
twitch_client_secret = ""
"""

# key -> expected type; the first five are required
_SCHEMA = {
    "output_folder": str,
    "convert_to_mp4": bool,
    "use_ffmpeg_convert": bool,
    "generate_contact_sheet": bool,
    "check_interval": int,
    "discord_webhook_url": str,
    "twitch_client_id": str,
    "twitch_client_secret": str,
}
_REQUIRED = (
    "output_folder",
    "convert_to_mp4",
    "use_ffmpeg_convert",
    "generate_contact_sheet",
    "check_interval",
)


class ConfigError(Exception):
    """Raised when the configuration cannot be located, read or validated."""


@dataclass(frozen=True)
class Settings:
    output_folder: str
    convert_to_mp4: bool = True
    use_ffmpeg_convert: bool = True
    generate_contact_sheet: bool = True
    check_interval: int = 60
    discord_webhook_url: str = ""
    twitch_client_id: str = ""
    twitch_client_secret: str = ""

    def with_output_folder(self, output_folder: str) -> "Settings":
        return replace(self, output_folder=output_folder)

    def as_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in _SCHEMA}


def config_dir() -> Path:
    return Path(user_config_dir(APP_NAME))


def log_dir() -> Path:
    return Path(user_log_dir(APP_NAME))


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    escaped = (
        str(value)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def dump_settings(settings: Settings) -> str:
    return "".join(
        f"{key} = {_toml_value(value)}\n" for key, value in settings.as_dict().items()
    )


def parse_settings(text: str) -> Settings:
    """Validate a TOML document and build a Settings instance from it.

    Args:
        text: The raw TOML document

    Returns:
        The parsed Settings

    Raises:
        ConfigError: If the document is malformed, misses a required key,
            or holds a value of the wrong type
    """
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed configuration: {e}") from e

    missing = [key for key in _REQUIRED if key not in data]
    if missing:
        raise ConfigError(f"Missing configuration keys: {', '.join(missing)}")

    values = {}
    for key, expected in _SCHEMA.items():
        if key not in data:
            continue
        value = data[key]
        # bool is a subclass of int, so check it explicitly
        if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
            raise ConfigError(
                f"Option '{key}' must be of type {expected.__name__}, got {value!r}"
            )
        values[key] = value

    if values["check_interval"] <= 0:
        raise ConfigError("Option 'check_interval' must be a positive number of seconds")
    return Settings(**values)


def save_config(settings: Settings, config_path: Path) -> None:
    config_path.write_text(dump_settings(settings), encoding="utf-8")
    logger.debug(f"Saved configuration to {config_path}")


def _prompt_output_folder() -> str:
    return input("Enter the output folder path for recordings: ").strip()


def load_config(config_path: Optional[Path] = None, prompt=_prompt_output_folder) -> Settings:
    """Load the settings file, creating it with defaults on first run.

    If no output folder has been configured yet the user is asked for one
    and the answer is written back to the file.

    Args:
        config_path: Explicit location of the config file. Defaults to
            config.toml inside the per-user config directory.
        prompt: Callable returning the output folder typed by the user

    Returns:
        The loaded Settings

    Raises:
        ConfigError: If the config directory or file is unusable
    """
    if config_path is None:
        config_path = config_dir() / "config.toml"

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        if config_path.exists():
            text = config_path.read_text(encoding="utf-8")
        else:
            config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
            logger.info(f"Created default configuration at {config_path}")
            text = DEFAULT_CONFIG
    except OSError as e:
        raise ConfigError(f"Cannot access configuration at {config_path}: {e}") from e

    settings = parse_settings(text)

    if not settings.output_folder:
        folder = prompt()
        if not folder:
            raise ConfigError("An output folder is required")
        settings = settings.with_output_folder(folder)
        try:
            save_config(settings, config_path)
        except OSError as e:
            raise ConfigError(f"Cannot save configuration at {config_path}: {e}") from e

    return settings
