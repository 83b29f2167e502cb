"""Конфигурация приложения."""
import os
from functools import lru_cache


def _float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


@lru_cache
def get_config():
    return type("Config", (), {
        "auth_secret": os.environ.get("AUTH_SECRET", ""),
        "debug": os.environ.get("DEBUG", "0").lower() in ("1", "true", "yes"),
        "allowed_origins": os.environ.get("ALLOWED_ORIGINS", "*").split(","),
        "database_url": os.environ.get("DATABASE_URL", "sqlite:///chessroom.db"),
        "stockfish_path": os.environ.get("STOCKFISH_PATH", "stockfish"),
        "reconnect_grace_seconds": _float("RECONNECT_GRACE_SECONDS", 60.0),
        "queue_stale_seconds": _float("QUEUE_STALE_SECONDS", 30.0),
        "idle_abandon_seconds": _float("IDLE_ABANDON_SECONDS", 3600.0),
        "finished_retention_seconds": _float("FINISHED_RETENTION_SECONDS", 86400.0),
        "sweep_interval_seconds": _float("SWEEP_INTERVAL_SECONDS", 5.0),
        "bot_think_min_seconds": _float("BOT_THINK_MIN_SECONDS", 0.5),
        "bot_think_max_seconds": _float("BOT_THINK_MAX_SECONDS", 1.5),
    })()
