# settings.py
import os
import json
import logging
from copy import deepcopy
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///race.db")
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
GAME_BASE = os.getenv("GAME_BASE", "http://localhost:4000")
CHAT_CHANNEL_NAME = os.getenv("DERBY_CHAT_CHANNEL", "").strip().lower()
API_PORT = int(os.getenv("PORT", 4000))
RUN_RACE_LOOP = os.getenv("DERBY_RUN_RACE_LOOP", "0") == "1"

# --- Game Balance Defaults ---
DEFAULT_BALANCE_CONFIG = {
    "economy": {
        "starting_balance": 1000,
        "house_cut": 0.1,
        "leaderboard_limit": 100,
    },
    "racing": {
        "entrants": 8,
        "track_length_min": 90,
        "track_length_max": 150,
        "tick_ms": 95,
        "betting_seconds": 30,
        "cooldown_seconds": 8,
        "error_backoff_base_seconds": 1.0,
        "error_backoff_max_seconds": 30.0,
    },
    "simulation": {
        "base_velocity_min": 0.35,
        "base_velocity_max": 1.0,
        "accel_min": -0.08,
        "accel_max": 0.12,
        "min_velocity": 0.12,
        "max_velocity": 1.8,
        "event_chance": 0.035,
        "event_cooldown_ticks": 6,
        "shield_duration_ticks": 4,
        "badge_ticks": 3,
        "boost_velocity": 0.55,
        "gust_velocity": 0.35,
        "slow_velocity": 0.5,
        "stumble_velocity": 0.1,
        "warp_min": 1.0,
        "warp_max": 2.2,
        "surge_min": 2.2,
        "surge_max": 3.2,
        "event_weights": {
            "boost": 0.22,
            "slow": 0.18,
            "gust": 0.15,
            "stumble": 0.13,
            "shield": 0.06,
            "warp": 0.08,
            "surge": 0.08,
        },
    },
    "odds": {
        "signal_limit": 1.0,
        "signal_decay": 0.97,
        "noise_sigma": 0.15,
        "progress_weight": 4.0,
        "signal_weight": 0.8,
        "comeback_weight": 1.5,
        "temperature": 1.0,
    },
    "chat": {
        "command_prefix": "!",
        "reconnect_min_seconds": 3.0,
        "reconnect_max_seconds": 60.0,
        "rate_limited_backoff_seconds": 30.0,
        "leaderboard_size": 10,
    },
}

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "DERBY_HOUSE_CUT": ("economy", "house_cut", float),
    "DERBY_STARTING_BALANCE": ("economy", "starting_balance", int),
    "DERBY_TICK_MS": ("racing", "tick_ms", int),
    "DERBY_BETTING_SECONDS": ("racing", "betting_seconds", float),
    "DERBY_COOLDOWN_SECONDS": ("racing", "cooldown_seconds", float),
    "DERBY_ENTRANTS": ("racing", "entrants", int),
}


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict) -> dict:
    """Rejects configurations the game cannot run with. Returns the config unchanged."""
    # Imported here so settings stays importable before the game packages are.
    from race_game.glyphs import GLYPH_POOL

    economy = config["economy"]
    racing = config["racing"]
    sim = config["simulation"]

    if not 0 <= economy["house_cut"] < 1:
        raise ValueError(f"house_cut must be in [0, 1), got {economy['house_cut']}")
    if economy["starting_balance"] < 0:
        raise ValueError("starting_balance cannot be negative")
    if not 1 <= racing["entrants"] <= len(GLYPH_POOL):
        raise ValueError(f"entrants must be between 1 and {len(GLYPH_POOL)}")
    if not 0 < racing["track_length_min"] <= racing["track_length_max"]:
        raise ValueError("track length range must be positive and ordered")
    if racing["tick_ms"] < 0 or racing["betting_seconds"] < 0 or racing["cooldown_seconds"] < 0:
        raise ValueError("timer durations cannot be negative")
    if not 0 < sim["min_velocity"] <= sim["max_velocity"]:
        raise ValueError("velocity bounds must satisfy 0 < min_velocity <= max_velocity")
    if sum(sim["event_weights"].values()) > 1.0:
        raise ValueError("event weights must sum to at most 1.0")
    return config


def load_balance_config(path: str = None, environ=None) -> dict:
    """Builds the game balance config: defaults, then the JSON file, then env vars."""
    environ = os.environ if environ is None else environ
    config = deepcopy(DEFAULT_BALANCE_CONFIG)

    path = path or environ.get("DERBY_CONFIG_PATH")
    if path:
        with open(path, "r", encoding="utf-8") as f:
            config = _deep_merge(config, json.load(f))
        logging.info(f"Loaded game balance overrides from {path}.")

    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            config[section][key] = cast(raw)
        except ValueError:
            raise ValueError(f"{env_name} must be a {cast.__name__}, got {raw!r}")

    return validate_config(config)


BALANCE_CONFIG = load_balance_config()
