# race_game/odds.py
import numpy as np


def display_odds(state, tuning) -> list:
    """
    Spectator-facing win percentages, one per entrant, summing to 100.
    Purely cosmetic: settlement only ever looks at the actual winner.

    Score = progress + event signal + per-entrant noise + a comeback bonus for
    entrants behind the leader, which fades as the leader nears the line.
    """
    positions = np.array(state.positions, dtype=float)
    if positions.size == 0:
        return []

    progress = positions / float(state.track_length)
    signal = np.array([h.signal for h in state.horses], dtype=float)
    noise = np.array([h.noise for h in state.horses], dtype=float)

    leader = progress.max()
    comeback = (leader - progress) * (1.0 - leader)

    scores = (
        tuning.progress_weight * progress
        + tuning.signal_weight * signal
        + noise
        + tuning.comeback_weight * comeback
    )
    scores = scores / max(tuning.temperature, 1e-6)

    weights = np.exp(scores - scores.max())
    percentages = weights / weights.sum() * 100.0
    return [round(float(p), 2) for p in percentages]
