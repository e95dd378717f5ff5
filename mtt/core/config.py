import json
import os
from dataclasses import dataclass, asdict, fields
from mtt.common.logger import log


SETTINGS_FILENAME = "settings.json"

# Default values for every tunable. Anything missing or malformed in settings.json falls back to these.
_SETTINGS_DEFAULTS = {
    "host": "127.0.0.1",
    "port": 13331,
    "max_payload_bytes": 1048576,
    "lock_timeout": 5.0,
    "request_timeout": 5.0,
    "refresh_interval_ms": 1000,
    "snapshot_min_minutes": 5,
    "notification_ms": 4000,
}

# Environment variables that override the file, newest name first. PORT is what the old node server read.
_ENV_OVERRIDES = {
    "host": ("MTT_HOST",),
    "port": ("MTT_PORT", "PORT"),
}


@dataclass
class Settings:
    host: str = _SETTINGS_DEFAULTS["host"]
    port: int = _SETTINGS_DEFAULTS["port"]
    max_payload_bytes: int = _SETTINGS_DEFAULTS["max_payload_bytes"]
    lock_timeout: float = _SETTINGS_DEFAULTS["lock_timeout"]
    request_timeout: float = _SETTINGS_DEFAULTS["request_timeout"]
    refresh_interval_ms: int = _SETTINGS_DEFAULTS["refresh_interval_ms"]
    snapshot_min_minutes: int = _SETTINGS_DEFAULTS["snapshot_min_minutes"]
    notification_ms: int = _SETTINGS_DEFAULTS["notification_ms"]

    @property
    def base_url(self):
        return f"http://{self.host}:{self.port}"

    def to_dict(self):
        return asdict(self)


# Coerces a raw value to the type of the default, returning None when it can't be used.
def _coerce(key, value):
    default = _SETTINGS_DEFAULTS[key]
    if isinstance(default, bool) or value is None:
        return None
    try:
        if isinstance(default, int):
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                return None
            coerced = int(value)
        elif isinstance(default, float):
            if isinstance(value, bool):
                return None
            coerced = float(value)
        else:
            coerced = str(value).strip()
            return coerced or None
    except (TypeError, ValueError):
        return None
    return coerced if coerced > 0 else None


# Loads settings from <data_dir>/settings.json, filling in defaults, then applies environment overrides. Never
# raises for bad content, it just logs what got defaulted.
def load_settings(data_dir, environ=None):
    environ = os.environ if environ is None else environ
    settings_path = data_dir / SETTINGS_FILENAME
    raw = {}
    defaulted_values = set()

    if settings_path.exists():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                log.warning(f"Settings file '{settings_path}' does not hold an object, using defaults.")
                raw = {}
        except (json.JSONDecodeError, OSError):
            log.warning(f"Ran into an error while trying to load '{settings_path}', using defaults.", exc_info=True)
            raw = {}

    values = {}
    for field in fields(Settings):
        key = field.name
        if key in raw:
            coerced = _coerce(key, raw[key])
            if coerced is None:
                defaulted_values.add(key)
                coerced = _SETTINGS_DEFAULTS[key]
        else:
            coerced = _SETTINGS_DEFAULTS[key]
        values[key] = coerced

    for key, names in _ENV_OVERRIDES.items():
        for name in names:
            if name not in environ:
                continue
            coerced = _coerce(key, environ[name])
            if coerced is None:
                log.warning(f"Ignoring invalid value {environ[name]!r} for environment variable {name}")
                continue
            values[key] = coerced
            break

    if defaulted_values:
        log.warning(f"Loaded settings from '{settings_path}', but with invalid values that were defaulted: {', '.join(sorted(defaulted_values))}")
    else:
        log.info(f"Loaded settings (file present: {settings_path.exists()}).")
    return Settings(**values)

# Writes the given settings back to <data_dir>/settings.json.
def save_settings(settings, data_dir):
    settings_path = data_dir / SETTINGS_FILENAME
    with open(settings_path, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2)
    log.info(f"Successfully saved settings to '{settings_path}'")
    return settings_path
