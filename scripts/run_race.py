"""
Runs races headlessly, without touching the ledger. Handy for tuning the
simulation knobs in the balance config.

Usage:
    python scripts/run_race.py --track-length 120 --seed 7
    python scripts/run_race.py --trials 2000 --silent
"""

import argparse
import os
import random
import sys

# Ensure repo root is on sys.path when script is executed from anywhere
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.append(REPO_ROOT)

import pandas as pd  # noqa: E402

from race_game.glyphs import pick_glyphs, random_track_length  # noqa: E402
from race_game.race_logic import RaceEngine, RaceTuning  # noqa: E402
from settings import BALANCE_CONFIG  # noqa: E402


def simulate(engine: RaceEngine, entrants: int, track_length: int, verbose: bool = False) -> dict:
    state = engine.initial(entrants, track_length)
    event_count = 0
    for result in engine.run(state):
        event_count += len(result.events)
        if verbose and result.events:
            labels = ", ".join(f"#{slot + 1} {label}" for slot, label in result.events)
            print(f"tick {result.state.tick:>4}: {labels}")
        state = result.state
    return {"winner": state.winner, "ticks": state.tick, "events": event_count, "track_length": track_length}


def main() -> None:
    racing = BALANCE_CONFIG["racing"]
    parser = argparse.ArgumentParser(description="Run Emoji Derby race simulations.")
    parser.add_argument("--entrants", type=int, default=racing["entrants"])
    parser.add_argument("--track-length", type=int, default=None,
                        help="Fixed track length (random per race if omitted).")
    parser.add_argument("--trials", type=int, default=1, help="Number of races to simulate.")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--silent", action="store_true", help="Only print the summary.")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    engine = RaceEngine(RaceTuning.from_config(), rng)

    rows = []
    for _ in range(args.trials):
        track_length = args.track_length or random_track_length(
            rng, racing["track_length_min"], racing["track_length_max"])
        verbose = not args.silent and args.trials == 1
        rows.append(simulate(engine, args.entrants, track_length, verbose=verbose))

    results = pd.DataFrame(rows)
    if args.trials == 1:
        glyphs = pick_glyphs(args.entrants, rng)
        row = rows[0]
        print(f"\nWinner: #{row['winner'] + 1} {glyphs[row['winner']]} after {row['ticks']} ticks "
              f"on a {row['track_length']}-unit track ({row['events']} events).")
        return

    win_share = results["winner"].value_counts(normalize=True).sort_index() * 100
    print(f"Simulated {args.trials} races.")
    print(f"Ticks per race: mean {results['ticks'].mean():.1f}, min {results['ticks'].min()}, max {results['ticks'].max()}")
    print(f"Events per race: mean {results['events'].mean():.1f}")
    print("\nWin share by horse:")
    for slot, share in win_share.items():
        print(f"  #{slot + 1}: {share:.1f}%")


if __name__ == "__main__":
    main()
