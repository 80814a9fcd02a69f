# ledger/database.py
import logging

from ledger.connection import (
    INTEGRITY_ERRORS,
    get_connection,
    is_sqlite,
    row_to_dict,
    rows_to_dicts,
    transaction,
)
from ledger.errors import (
    AlreadySettled,
    InsufficientBalance,
    NoOpenRace,
    NoRacingRace,
    RaceAlreadyActive,
)
from ledger.payouts import SettlementSummary, compute_settlement
from settings import BALANCE_CONFIG

ACTIVE_STATUSES = ('open', 'racing', 'settling')
RACE_COLUMNS = "id, track_length, status, winner_slot, created_at, started_at, finished_at"

# {pk} and {ts} are filled in per backend by initialize_database().
SCHEMA_COMMANDS = (
    """
    CREATE TABLE IF NOT EXISTS players (
        id {pk},
        name TEXT UNIQUE NOT NULL,
        balance INTEGER NOT NULL DEFAULT 1000 CHECK (balance >= 0),
        created_at {ts} DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS races (
        id {pk},
        track_length INTEGER NOT NULL CHECK (track_length > 0),
        status TEXT NOT NULL CHECK (status IN ('open', 'racing', 'settling', 'done')),
        winner_slot INTEGER,
        created_at {ts} DEFAULT CURRENT_TIMESTAMP,
        started_at {ts},
        finished_at {ts}
    );
    """,
    # At most one race may be open, racing or settling at any moment.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS races_single_active
    ON races ((status IN ('open', 'racing', 'settling')))
    WHERE status IN ('open', 'racing', 'settling');
    """,
    """
    CREATE TABLE IF NOT EXISTS race_horses (
        id {pk},
        race_id INTEGER NOT NULL REFERENCES races(id),
        slot INTEGER NOT NULL,
        glyph TEXT NOT NULL,
        UNIQUE (race_id, slot)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS bets (
        id {pk},
        race_id INTEGER NOT NULL REFERENCES races(id),
        player_id INTEGER NOT NULL REFERENCES players(id),
        slot INTEGER NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        created_at {ts} DEFAULT CURRENT_TIMESTAMP
    );
    """,
    "CREATE INDEX IF NOT EXISTS bets_race_idx ON bets (race_id);",
    """
    CREATE TABLE IF NOT EXISTS payouts (
        id {pk},
        race_id INTEGER NOT NULL REFERENCES races(id),
        player_id INTEGER NOT NULL REFERENCES players(id),
        amount INTEGER NOT NULL CHECK (amount >= 0),
        created_at {ts} DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS house_ledger (
        id {pk},
        race_id INTEGER UNIQUE NOT NULL REFERENCES races(id),
        total_pool INTEGER NOT NULL,
        after_house INTEGER NOT NULL,
        paid_out INTEGER NOT NULL,
        house_take INTEGER NOT NULL,
        created_at {ts} DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS race_events (
        id {pk},
        race_id INTEGER NOT NULL REFERENCES races(id),
        tick INTEGER NOT NULL,
        slot INTEGER NOT NULL,
        label TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS race_events_race_idx ON race_events (race_id);",
)

DIALECT_TYPES = {
    "postgres": {"pk": "SERIAL PRIMARY KEY", "ts": "TIMESTAMPTZ"},
    "sqlite": {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "ts": "TEXT"},
}


def initialize_database():
    """Creates all ledger tables and indexes if they don't already exist."""
    conn = get_connection()
    types = DIALECT_TYPES["sqlite" if is_sqlite(conn) else "postgres"]
    try:
        with conn.cursor() as cursor:
            for command in SCHEMA_COMMANDS:
                cursor.execute(command.format(**types))
        conn.commit()
        logging.info("Ledger tables created or verified successfully.")
    except Exception as e:
        logging.error(f"Error initializing ledger tables: {e}")
        conn.rollback()
        raise
    finally:
        conn.close()


def _starting_balance(starting_balance):
    if starting_balance is None:
        return BALANCE_CONFIG['economy']['starting_balance']
    return starting_balance


def _ensure_player(cursor, name: str, starting_balance: int = None):
    cursor.execute(
        "INSERT INTO players (name, balance) VALUES (%s, %s) ON CONFLICT (name) DO NOTHING;",
        (name, _starting_balance(starting_balance))
    )


### Players ###

def create_player_if_absent(name: str, starting_balance: int = None) -> dict:
    """Returns the player, creating them with the starting grant on first sight."""
    with transaction() as cursor:
        _ensure_player(cursor, name, starting_balance)
        cursor.execute("SELECT id, name, balance, created_at FROM players WHERE name = %s;", (name,))
        return row_to_dict(cursor, cursor.fetchone())


def get_player(name: str):
    with transaction(write=False) as cursor:
        cursor.execute("SELECT id, name, balance, created_at FROM players WHERE name = %s;", (name,))
        return row_to_dict(cursor, cursor.fetchone())


def get_leaderboard(limit: int = None) -> list:
    """Players ordered by balance, richest first."""
    limit = limit or BALANCE_CONFIG['economy']['leaderboard_limit']
    with transaction(write=False) as cursor:
        cursor.execute(
            "SELECT name, balance FROM players ORDER BY balance DESC, name ASC LIMIT %s;",
            (limit,)
        )
        return rows_to_dicts(cursor, cursor.fetchall())


### Races ###

def _insert_race(cursor, track_length: int, glyphs) -> int:
    if not glyphs:
        raise ValueError("A race needs at least one entrant.")
    if len(set(glyphs)) != len(glyphs):
        raise ValueError("Entrant glyphs must be unique within a race.")

    cursor.execute(
        "INSERT INTO races (track_length, status) VALUES (%s, 'open') RETURNING id;",
        (track_length,)
    )
    race_id = cursor.fetchone()[0]
    cursor.executemany(
        "INSERT INTO race_horses (race_id, slot, glyph) VALUES (%s, %s, %s);",
        [(race_id, slot, glyph) for slot, glyph in enumerate(glyphs)]
    )
    return race_id


def _fetch_active_race(cursor):
    cursor.execute(
        f"SELECT {RACE_COLUMNS} FROM races WHERE status IN ('open', 'racing') "
        "ORDER BY id DESC LIMIT 1;"
    )
    return row_to_dict(cursor, cursor.fetchone())


def create_race(track_length: int, glyphs) -> int:
    """
    Creates an open race and its entrants in one transaction.
    Raises RaceAlreadyActive if another race is still open, racing or settling.
    """
    try:
        with transaction() as cursor:
            race_id = _insert_race(cursor, track_length, glyphs)
    except INTEGRITY_ERRORS as e:
        logging.warning(f"Race creation rejected, another race is active: {e}")
        raise RaceAlreadyActive("Another race is already active.") from e
    logging.info(f"Created race #{race_id} (track {track_length}, {len(glyphs)} entrants).")
    return race_id


def acquire_race(track_length: int, glyphs):
    """
    Returns (race, created). Reuses the current open/racing race when there is
    one and only creates a new race otherwise.
    """
    for attempt in range(2):
        try:
            with transaction() as cursor:
                active = _fetch_active_race(cursor)
                if active:
                    return active, False
                race_id = _insert_race(cursor, track_length, glyphs)
                cursor.execute(f"SELECT {RACE_COLUMNS} FROM races WHERE id = %s;", (race_id,))
                race = row_to_dict(cursor, cursor.fetchone())
            logging.info(f"Created race #{race_id} (track {track_length}, {len(glyphs)} entrants).")
            return race, True
        except INTEGRITY_ERRORS as e:
            # A concurrent caller created the race first; the next pass picks it up.
            logging.warning(f"Race acquisition collided with a concurrent creation: {e}")
    raise RaceAlreadyActive("Could not acquire the active race.")


def get_race(race_id: int):
    with transaction(write=False) as cursor:
        cursor.execute(f"SELECT {RACE_COLUMNS} FROM races WHERE id = %s;", (race_id,))
        return row_to_dict(cursor, cursor.fetchone())


def _latest_race_with_status(status: str):
    with transaction(write=False) as cursor:
        cursor.execute(
            f"SELECT {RACE_COLUMNS} FROM races WHERE status = %s ORDER BY id DESC LIMIT 1;",
            (status,)
        )
        return row_to_dict(cursor, cursor.fetchone())


def get_open_race():
    """The most recent race still accepting bets, or None."""
    return _latest_race_with_status('open')


def get_racing_race():
    return _latest_race_with_status('racing')


def get_open_or_racing_race():
    with transaction(write=False) as cursor:
        return _fetch_active_race(cursor)


def list_entrants(race_id: int) -> list:
    with transaction(write=False) as cursor:
        cursor.execute(
            "SELECT slot, glyph FROM race_horses WHERE race_id = %s ORDER BY slot;",
            (race_id,)
        )
        return rows_to_dicts(cursor, cursor.fetchall())


def lock_betting(race_id: int) -> bool:
    """Moves an open race to racing. Returns False if it was not open."""
    with transaction() as cursor:
        cursor.execute(
            "UPDATE races SET status = 'racing', started_at = CURRENT_TIMESTAMP "
            "WHERE id = %s AND status = 'open';",
            (race_id,)
        )
        locked = cursor.rowcount == 1
    if locked:
        logging.info(f"Betting locked for race #{race_id}.")
    return locked


### Bets & Settlement ###

def place_bet(race_id: int, player_name: str, slot: int, amount: int, starting_balance: int = None) -> int:
    """
    Executes a bet as a single, atomic transaction.
    1. Locks the race row and checks it is still open.
    2. Creates the player if needed.
    3. Debits the balance with one conditioned UPDATE (never read-then-write).
    4. Inserts the bet record.
    Returns the new balance. Nothing is persisted if any step fails.
    """
    with transaction() as cursor:
        # The row lock makes bets and lock_betting/settlement mutually exclusive.
        cursor.execute("SELECT status FROM races WHERE id = %s FOR UPDATE;", (race_id,))
        race = cursor.fetchone()
        if not race or race[0] != 'open':
            raise NoOpenRace(f"Race #{race_id} is not open for bets.")

        _ensure_player(cursor, player_name, starting_balance)
        cursor.execute(
            "UPDATE players SET balance = balance - %s "
            "WHERE name = %s AND balance >= %s RETURNING id, balance;",
            (amount, player_name, amount)
        )
        debited = cursor.fetchone()
        if debited is None:
            logging.warning(f"Bet failed: insufficient funds for {player_name} ({amount}).")
            raise InsufficientBalance(f"{player_name} cannot cover a bet of {amount}.")

        player_id, new_balance = debited
        cursor.execute(
            "INSERT INTO bets (race_id, player_id, slot, amount) VALUES (%s, %s, %s, %s);",
            (race_id, player_id, slot, amount)
        )

    logging.info(f"Bet placed: {player_name} bet {amount} on slot {slot} in race #{race_id}.")
    return new_balance


def settle_race(race_id: int, winning_slot: int, house_cut: float = None) -> SettlementSummary:
    """
    Pays out a finished race as a single, atomic transaction.
    The racing -> settling transition is the guard: a race that is already
    settled (or never raced) cannot be paid twice.
    """
    if house_cut is None:
        house_cut = BALANCE_CONFIG['economy']['house_cut']

    with transaction() as cursor:
        cursor.execute(
            "UPDATE races SET status = 'settling' WHERE id = %s AND status = 'racing';",
            (race_id,)
        )
        if cursor.rowcount == 0:
            cursor.execute("SELECT status FROM races WHERE id = %s;", (race_id,))
            row = cursor.fetchone()
            if row and row[0] in ('settling', 'done'):
                raise AlreadySettled(f"Race #{race_id} has already been settled.")
            raise NoRacingRace(f"Race #{race_id} is not racing.")

        cursor.execute(
            """
            SELECT b.player_id, p.name, b.slot, b.amount
            FROM bets b JOIN players p ON p.id = b.player_id
            WHERE b.race_id = %s
            ORDER BY b.id;
            """,
            (race_id,)
        )
        bets = rows_to_dicts(cursor, cursor.fetchall())
        summary = compute_settlement(bets, winning_slot, house_cut)

        for payout in summary.payouts:
            cursor.execute(
                "UPDATE players SET balance = balance + %s WHERE id = %s;",
                (payout.amount, payout.player_id)
            )
            cursor.execute(
                "INSERT INTO payouts (race_id, player_id, amount) VALUES (%s, %s, %s);",
                (race_id, payout.player_id, payout.amount)
            )

        cursor.execute(
            """
            INSERT INTO house_ledger (race_id, total_pool, after_house, paid_out, house_take)
            VALUES (%s, %s, %s, %s, %s);
            """,
            (race_id, summary.total_pool, summary.after_house, summary.paid_out, summary.house_take)
        )
        cursor.execute(
            "UPDATE races SET status = 'done', winner_slot = %s, finished_at = CURRENT_TIMESTAMP "
            "WHERE id = %s;",
            (winning_slot, race_id)
        )

    logging.info(
        f"Settled race #{race_id}: pool {summary.total_pool}, after house {summary.after_house}, "
        f"on winner {summary.winner_pool}, {len(summary.payouts)} payout(s) totalling {summary.paid_out}."
    )
    return summary


def list_bets(race_id: int) -> list:
    with transaction(write=False) as cursor:
        cursor.execute(
            """
            SELECT b.id, p.name, b.slot, b.amount, b.created_at
            FROM bets b JOIN players p ON p.id = b.player_id
            WHERE b.race_id = %s
            ORDER BY b.id;
            """,
            (race_id,)
        )
        return rows_to_dicts(cursor, cursor.fetchall())


def list_payouts(race_id: int) -> list:
    with transaction(write=False) as cursor:
        cursor.execute(
            """
            SELECT p.name, po.amount
            FROM payouts po JOIN players p ON p.id = po.player_id
            WHERE po.race_id = %s
            ORDER BY po.amount DESC, po.id;
            """,
            (race_id,)
        )
        return rows_to_dicts(cursor, cursor.fetchall())


def get_house_ledger_entry(race_id: int):
    with transaction(write=False) as cursor:
        cursor.execute(
            "SELECT race_id, total_pool, after_house, paid_out, house_take FROM house_ledger WHERE race_id = %s;",
            (race_id,)
        )
        return row_to_dict(cursor, cursor.fetchone())


def get_race_pools(race_id: int) -> dict:
    """Total amount wagered on each slot of a race."""
    with transaction(write=False) as cursor:
        cursor.execute(
            "SELECT slot, SUM(amount) FROM bets WHERE race_id = %s GROUP BY slot ORDER BY slot;",
            (race_id,)
        )
        return {int(slot): int(total) for slot, total in cursor.fetchall()}


### Race Event Audit Log ###

def log_race_events(race_id: int, events) -> int:
    """Stores (tick, slot, label) rows emitted by the simulation. Returns the row count."""
    rows = [(race_id, tick, slot, label) for tick, slot, label in events]
    if not rows:
        return 0
    with transaction() as cursor:
        cursor.executemany(
            "INSERT INTO race_events (race_id, tick, slot, label) VALUES (%s, %s, %s, %s);",
            rows
        )
    return len(rows)


def list_race_events(race_id: int) -> list:
    with transaction(write=False) as cursor:
        cursor.execute(
            "SELECT tick, slot, label FROM race_events WHERE race_id = %s ORDER BY tick, slot;",
            (race_id,)
        )
        return rows_to_dicts(cursor, cursor.fetchall())


if __name__ == "__main__":
    """
    Run directly for one-time database setup.
    """
    print("Attempting to initialize the ledger database...")
    initialize_database()
