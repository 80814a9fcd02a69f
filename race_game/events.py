# race_game/events.py


def clamp(value, low, high):
    return max(low, min(high, value))


# Label shown when a shield absorbs a negative event.
SHIELD_LABEL = "🛡️"
SHIELD_BLOCK_SIGNAL = 0.1

# --- Event Definitions ---
# Order matters: a roll walks these bands in insertion order.
# "effect" returns the HorseState fields to replace.

EVENT_DEFINITIONS = {
    "boost": {
        "label": "🚀",
        "description": "Big burst of speed.",
        "signal": 0.25,
        "blocked_by_shield": False,
        "effect": lambda horse, tuning, rng: {
            "velocity": clamp(horse.velocity + tuning.boost_velocity, tuning.min_velocity, tuning.max_velocity)
        },
    },
    "slow": {
        "label": "🍌",
        "description": "Slips on a banana and loses speed.",
        "signal": -0.25,
        "blocked_by_shield": True,
        "effect": lambda horse, tuning, rng: {
            "velocity": max(tuning.min_velocity, horse.velocity - tuning.slow_velocity)
        },
    },
    "gust": {
        "label": "💨",
        "description": "Tailwind, a smaller boost.",
        "signal": 0.15,
        "blocked_by_shield": False,
        "effect": lambda horse, tuning, rng: {
            "velocity": clamp(horse.velocity + tuning.gust_velocity, tuning.min_velocity, tuning.max_velocity)
        },
    },
    "stumble": {
        "label": "🤕",
        "description": "Stumbles and drops to a crawl.",
        "signal": -0.35,
        "blocked_by_shield": True,
        # Never below the floor, so every tick still makes progress.
        "effect": lambda horse, tuning, rng: {
            "velocity": max(tuning.min_velocity, tuning.stumble_velocity)
        },
    },
    "shield": {
        "label": SHIELD_LABEL,
        "description": "Blocks slow and stumble for a few ticks. Re-rolling resets, never stacks.",
        "signal": 0.1,
        "blocked_by_shield": False,
        "effect": lambda horse, tuning, rng: {"shield_ticks": tuning.shield_duration_ticks},
    },
    "warp": {
        "label": "⏩",
        "description": "Small jump forward.",
        "signal": 0.2,
        "blocked_by_shield": False,
        "effect": lambda horse, tuning, rng: {
            "position": horse.position + rng.uniform(tuning.warp_min, tuning.warp_max)
        },
    },
    "surge": {
        "label": "🌀",
        "description": "Bigger jump forward.",
        "signal": 0.3,
        "blocked_by_shield": False,
        "effect": lambda horse, tuning, rng: {
            "position": horse.position + rng.uniform(tuning.surge_min, tuning.surge_max)
        },
    },
}


def draw_event(tuning, rng):
    """
    Rolls for an event. Returns an event name or None.
    First a per-tick chance, then one draw across the weighted bands; the mass
    left over after the last band means no event.
    """
    if rng.random() >= tuning.event_chance:
        return None

    r = rng.random()
    for name in EVENT_DEFINITIONS:
        weight = tuning.event_weights.get(name, 0.0)
        if r < weight:
            return name
        r -= weight
    return None


def apply_event(name, horse, tuning, rng):
    """Returns (changes, label, signal_delta) for an event hitting `horse`."""
    definition = EVENT_DEFINITIONS[name]
    if definition["blocked_by_shield"] and horse.shield_ticks > 0:
        return {}, SHIELD_LABEL, SHIELD_BLOCK_SIGNAL
    return definition["effect"](horse, tuning, rng), definition["label"], definition["signal"]
