# chat_bridge/replies.py
from chat_bridge.commands import help_text, parse_command
from settings import BALANCE_CONFIG


class CommandHandler:
    """Turns one chat message into one reply line (or None when there is nothing to say)."""

    def __init__(self, client, entrants: int = None, prefix: str = None, leaderboard_size: int = None):
        chat = BALANCE_CONFIG['chat']
        self.client = client
        self.entrants = entrants or BALANCE_CONFIG['racing']['entrants']
        self.prefix = prefix or chat['command_prefix']
        self.leaderboard_size = leaderboard_size or chat['leaderboard_size']

    def usage(self, user: str) -> str:
        return f"{user}, usage: {self.prefix}bet <amount> <horse(1-{self.entrants})>"

    async def handle(self, user: str, text: str):
        command = parse_command(text, self.entrants, self.prefix)
        if command is None:
            return None

        if command.name == "help":
            return help_text(self.entrants, self.prefix)

        if command.name == "balance":
            payload = await self.client.get_balance(user)
            if payload.get("ok"):
                return f"{user}, you have {payload['balance']} coins."
            return f"{user}, balance error: {payload.get('error') or 'unknown'}."

        if command.name == "leaderboard":
            payload = await self.client.get_leaderboard()
            if not payload.get("ok"):
                return f"Leaderboard error: {payload.get('error') or 'unknown'}"
            top = (payload.get("players") or [])[:self.leaderboard_size]
            if not top:
                return "🏆 Leaderboard is empty."
            return "🏆 Leaderboard → " + " | ".join(
                f"{rank}. {p['name']}: {p['balance']}" for rank, p in enumerate(top, start=1)
            )

        if command.name == "bet_usage":
            return self.usage(user)

        payload = await self.client.place_bet(user, command.slot, command.amount)
        if payload.get("ok"):
            return f"✅ {user} bet {command.amount} on #{command.horse}. New balance: {payload['balance']}"
        return f"❌ Bet failed for {user}: {payload.get('error') or 'unknown'}"
