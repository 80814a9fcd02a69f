# chat_bridge/commands.py
import re
from dataclasses import dataclass
from typing import Optional

BET_PATTERN = re.compile(r"^bet\s+(\d+)\s+(\d+)(?:\s|$)", re.IGNORECASE)
READ_COMMANDS = ("help", "balance", "leaderboard")


@dataclass(frozen=True)
class ChatCommand:
    name: str  # help | balance | leaderboard | bet | bet_usage
    amount: Optional[int] = None
    slot: Optional[int] = None

    @property
    def horse(self):
        """The 1-based horse number players type."""
        return None if self.slot is None else self.slot + 1


def help_text(entrants: int = 8, prefix: str = "!") -> str:
    return (
        f"Commands: {prefix}bet <amount> <horse(1-{entrants})> | "
        f"{prefix}balance | {prefix}leaderboard"
    )


def parse_command(text, entrants: int = 8, prefix: str = "!") -> Optional[ChatCommand]:
    """
    Maps one chat line to a command, or None when the line is not for us.
    `!bet <amount> <horse>` takes a 1-based horse number; anything out of range
    comes back as `bet_usage` rather than being clamped into a different bet.
    """
    line = str(text or "").strip()
    if not line.startswith(prefix):
        return None
    body = line[len(prefix):].strip()
    if not body:
        return None

    word = body.split(maxsplit=1)[0].lower()
    if word in READ_COMMANDS:
        return ChatCommand(word) if body.lower() == word else None

    if word != "bet":
        return None

    match = BET_PATTERN.match(body)
    if not match:
        return ChatCommand("bet_usage")
    amount, horse = int(match.group(1)), int(match.group(2))
    if amount <= 0 or not 1 <= horse <= entrants:
        return ChatCommand("bet_usage")
    return ChatCommand("bet", amount=amount, slot=horse - 1)
