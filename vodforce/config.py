import json
import logging
import os
from dataclasses import dataclass, fields, replace

from vodforce.errors import InvalidInput
from vodforce.hosts import compile_cdn_list, get_package_directory

logger = logging.getLogger(__name__)

CLIP_FORMATS = ("default", "vod", "index")

SETTINGS_KEYS = {
    "THREADS": "threads",
    "TIMEOUT": "timeout",
    "RETRIES": "retries",
    "BACKOFF_BASE": "backoff_base",
    "BACKOFF_MAX": "backoff_max",
    "QUALITY": "quality",
    "CLIP_FORMATS": "clip_formats",
    "CLIP_STRIDE": "clip_stride",
    "USE_PROGRESS_BAR": "use_progress_bar",
}

SETTINGS_TYPES = {
    "threads": int,
    "timeout": float,
    "retries": int,
    "backoff_base": float,
    "backoff_max": float,
    "quality": str,
    "clip_stride": int,
}


def read_config_file(config_file):
    config_path = os.path.join(get_package_directory(), "config", f"{config_file}.json")
    return read_json_settings(config_path)


def read_json_settings(config_path):
    if not os.path.exists(config_path):
        logger.debug("No settings file at %s, using defaults", config_path)
        return {}
    with open(config_path, "r", encoding="utf-8") as input_config_file:
        try:
            config = json.load(input_config_file)
        except json.JSONDecodeError as e:
            raise InvalidInput(f"Settings file {config_path} is not valid JSON: {e}") from e
    if not isinstance(config, dict):
        raise InvalidInput(f"Settings file {config_path} must hold a JSON object")
    return config


def parse_flag(key, value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidInput(f"Setting {key} must be true or false, got {value!r}")


def parse_setting(key, name, value):
    if name == "use_progress_bar":
        return parse_flag(key, value)
    if name == "clip_formats":
        if isinstance(value, str):
            return tuple(value.split())
        if isinstance(value, list):
            return tuple(value)
        raise InvalidInput(f"Setting {key} must be a list of clip formats, got {value!r}")
    convert = SETTINGS_TYPES[name]
    if isinstance(value, bool):
        raise InvalidInput(f"Setting {key} must be {convert.__name__}, got {value!r}")
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Setting {key} must be {convert.__name__}, got {value!r}") from None


@dataclass(frozen=True)
class SearchConfig:
    hosts: tuple = ()
    threads: int = 100
    timeout: float = 30
    retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 4
    quality: str = "chunked"
    clip_formats: tuple = ("default",)
    clip_stride: int = 1
    use_progress_bar: bool = True

    def __post_init__(self):
        try:
            self.validate()
        except TypeError as e:
            raise InvalidInput(f"Invalid setting value: {e}") from e

    def validate(self):
        if self.threads < 1:
            raise InvalidInput(f"threads must be at least 1, got {self.threads}")
        if self.retries < 0:
            raise InvalidInput(f"retries can't be negative, got {self.retries}")
        if self.timeout <= 0:
            raise InvalidInput(f"timeout must be positive, got {self.timeout}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise InvalidInput("backoff values can't be negative")
        if self.clip_stride < 1:
            raise InvalidInput(f"clip stride must be at least 1, got {self.clip_stride}")
        unknown = [name for name in self.clip_formats if name not in CLIP_FORMATS]
        if unknown or not self.clip_formats:
            raise InvalidInput(f"Unknown clip formats {unknown}, expected some of {', '.join(CLIP_FORMATS)}")

    def backoff(self, attempt):
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    def with_overrides(self, **overrides):
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in overrides.items() if k in known and v is not None})

    @classmethod
    def from_settings(cls, settings):
        values = {}
        for key, name in SETTINGS_KEYS.items():
            if settings.get(key) is not None:
                values[name] = parse_setting(key, name, settings[key])
        return cls(**values)

    @classmethod
    def load(cls, settings_path=None, cdn_file=None, **overrides):
        """Packaged settings, then the user's settings file, then CLI overrides."""
        settings = read_config_file("settings")
        if settings_path:
            if not os.path.exists(settings_path):
                raise InvalidInput(f"Settings file not found: {settings_path}")
            settings.update(read_json_settings(settings_path))
        config = cls.from_settings(settings)
        return config.with_overrides(hosts=compile_cdn_list(cdn_file), **overrides)
