# ledger/payouts.py
import math
from dataclasses import dataclass, field
from typing import List

import pandas as pd

BET_COLUMNS = ["player_id", "name", "slot", "amount"]


@dataclass(frozen=True)
class Payout:
    player_id: int
    name: str
    amount: int

    def to_dict(self) -> dict:
        return {"name": self.name, "amount": self.amount}


@dataclass(frozen=True)
class SettlementSummary:
    total_pool: int
    after_house: int
    winner_pool: int
    payouts: List[Payout] = field(default_factory=list)

    @property
    def paid_out(self) -> int:
        return sum(p.amount for p in self.payouts)

    @property
    def house_take(self) -> int:
        return self.total_pool - self.paid_out

    def to_dict(self) -> dict:
        return {
            "totalPool": self.total_pool,
            "afterHouse": self.after_house,
            "winnerPool": self.winner_pool,
            "payouts": [p.to_dict() for p in self.payouts],
        }


def compute_settlement(bets, winning_slot: int, house_cut: float) -> SettlementSummary:
    """
    Splits a race's pool between the players who backed the winner.

    `bets` is a DataFrame (or list of dicts) with player_id, name, slot and amount.
    The house keeps `house_cut` of the pool; what remains is shared pro rata by
    each player's summed stake on the winning slot. Shares are floored, so the
    payouts can add up to less than the after-house pool; the remainder stays
    with the house. When nobody backed the winner there are no payouts at all.
    """
    bets_df = pd.DataFrame(bets, columns=BET_COLUMNS)

    total_pool = int(bets_df['amount'].sum())
    after_house = math.floor(total_pool * (1 - house_cut))

    winning_bets = bets_df[bets_df['slot'] == winning_slot]
    winner_pool = int(winning_bets['amount'].sum())

    if winner_pool == 0:
        return SettlementSummary(total_pool, after_house, winner_pool, [])

    # Multiple winning bets from one player are summed before the share is floored.
    stakes = winning_bets.groupby(['player_id', 'name'], sort=False)['amount'].sum()

    payouts = []
    for (player_id, name), stake in stakes.items():
        share = math.floor(int(stake) / winner_pool * after_house)
        payouts.append(Payout(int(player_id), str(name), share))

    payouts.sort(key=lambda p: p.amount, reverse=True)
    return SettlementSummary(total_pool, after_house, winner_pool, payouts)
