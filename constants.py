import os
from typing import Optional

from pydantic import BaseModel

APP_ENV = os.getenv("APP_ENV", "development")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))

ROOM_CODE_MIN = 1000
ROOM_CODE_MAX = 9999
ROOM_CODE_ATTEMPTS = 20
MAX_PARTICIPANTS = 2

# Close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001

# Per-environment defaults, overridable through env vars below
PROFILES = {
    "development": {
        "log_level": "DEBUG",
        "room_cleanup_interval": 10 * 60,
        "room_max_age": 60 * 60,
        "max_rooms": 100,
        "max_payload": 16 * 1024,
        "enable_stats": False,
        "stats_interval": 5 * 60,
        "shutdown_on_crash": False,
    },
    "production": {
        "log_level": "INFO",
        "room_cleanup_interval": 5 * 60,  # more frequent on small hosts
        "room_max_age": 30 * 60,
        "max_rooms": 50,
        "max_payload": 16 * 1024,
        "enable_stats": True,
        "stats_interval": 5 * 60,
        "shutdown_on_crash": True,
    },
}


class Settings(BaseModel):
    env: str = "development"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "DEBUG"
    log_file: Optional[str] = None
    cors_origins: list[str] = ["*"]
    room_cleanup_interval: float = 600
    room_max_age: float = 3600
    max_rooms: Optional[int] = 100
    max_payload: int = 16 * 1024
    enable_stats: bool = False
    stats_interval: float = 300
    shutdown_on_crash: bool = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[str] = None) -> Settings:
    """Build settings for the given profile, letting env vars override it."""
    env = env or APP_ENV
    if env not in PROFILES:
        raise ValueError(f"Unknown APP_ENV {env!r}, expected one of {sorted(PROFILES)}")
    profile = PROFILES[env]

    cors = os.getenv("CORS_ORIGINS")
    max_rooms = os.getenv("MAX_ROOMS")

    return Settings(
        env=env,
        host=HOST,
        port=PORT,
        log_level=os.getenv("LOG_LEVEL", profile["log_level"]),
        log_file=os.getenv("LOG_FILE", None),
        cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else ["*"],
        room_cleanup_interval=float(os.getenv("ROOM_CLEANUP_INTERVAL", profile["room_cleanup_interval"])),
        room_max_age=float(os.getenv("ROOM_MAX_AGE", profile["room_max_age"])),
        max_rooms=int(max_rooms) if max_rooms else profile["max_rooms"],
        max_payload=int(os.getenv("MAX_PAYLOAD", profile["max_payload"])),
        enable_stats=_env_bool("ENABLE_STATS", profile["enable_stats"]),
        stats_interval=float(os.getenv("STATS_INTERVAL", profile["stats_interval"])),
        shutdown_on_crash=profile["shutdown_on_crash"],
    )
