import pandas as pd

from ledger.payouts import Payout, compute_settlement

# --- Fixtures ---

def _bet(player_id, name, slot, amount):
    return {'player_id': player_id, 'name': name, 'slot': slot, 'amount': amount}


# --- Settlement Maths ---

def test_two_player_scenario():
    """A and B bet 100 each, slot 0 wins: A takes the whole after-house pool."""
    bets = [_bet(1, 'A', 0, 100), _bet(2, 'B', 1, 100)]
    summary = compute_settlement(bets, winning_slot=0, house_cut=0.1)

    assert summary.total_pool == 200
    assert summary.after_house == 180
    assert summary.winner_pool == 100
    assert summary.payouts == [Payout(1, 'A', 180)]
    assert summary.house_take == 20


def test_no_bets_on_winner_pays_nothing():
    bets = [_bet(1, 'A', 0, 100), _bet(2, 'B', 1, 50)]
    summary = compute_settlement(bets, winning_slot=2, house_cut=0.1)

    assert summary.winner_pool == 0
    assert summary.payouts == []
    assert summary.paid_out == 0
    assert summary.house_take == 150


def test_empty_pool():
    summary = compute_settlement([], winning_slot=0, house_cut=0.1)
    assert summary.total_pool == 0
    assert summary.after_house == 0
    assert summary.payouts == []


def test_multiple_winning_bets_are_summed_before_flooring():
    """A's two 1-coin bets share as one 2-coin stake: floor(2/4 * 10) = 5, not 2 + 2."""
    bets = [
        _bet(1, 'A', 0, 1),
        _bet(1, 'A', 0, 1),
        _bet(2, 'B', 0, 2),
        _bet(3, 'C', 1, 8),
    ]
    summary = compute_settlement(bets, winning_slot=0, house_cut=0.1)

    assert summary.total_pool == 12
    assert summary.after_house == 10
    assert summary.winner_pool == 4
    assert sorted((p.name, p.amount) for p in summary.payouts) == [('A', 5), ('B', 5)]


def test_floor_rounding_remainder_stays_with_house():
    bets = [_bet(1, 'A', 0, 1), _bet(2, 'B', 0, 3), _bet(3, 'C', 1, 7)]
    summary = compute_settlement(bets, winning_slot=0, house_cut=0.1)

    assert summary.after_house == 9
    assert [p.amount for p in summary.payouts] == [6, 2]
    assert summary.paid_out == 8
    assert summary.paid_out < summary.after_house


def test_payouts_sorted_descending():
    bets = [_bet(1, 'Small', 0, 10), _bet(2, 'Big', 0, 90), _bet(3, 'Mid', 0, 50)]
    summary = compute_settlement(bets, winning_slot=0, house_cut=0.0)
    amounts = [p.amount for p in summary.payouts]
    assert amounts == sorted(amounts, reverse=True)
    assert summary.payouts[0].name == 'Big'


def test_conservation_over_many_pools():
    """Payouts never exceed the after-house pool."""
    for n in range(1, 40):
        bets = [_bet(i, f'P{i}', i % 3, (i * 7) % 23 + 1) for i in range(n)]
        for cut in (0.0, 0.05, 0.1, 0.33):
            summary = compute_settlement(bets, winning_slot=0, house_cut=cut)
            assert summary.paid_out <= summary.after_house <= summary.total_pool


def test_accepts_dataframe_and_serializes():
    bets_df = pd.DataFrame([_bet(1, 'A', 0, 100), _bet(2, 'B', 1, 100)])
    summary = compute_settlement(bets_df, winning_slot=0, house_cut=0.1)
    assert summary.to_dict() == {
        'totalPool': 200,
        'afterHouse': 180,
        'winnerPool': 100,
        'payouts': [{'name': 'A', 'amount': 180}],
    }
