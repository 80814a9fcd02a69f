import asyncio
import logging

import discord
from discord.ext import commands

import settings
from chat_bridge.client import GameApiClient
from chat_bridge.connection import ConnectionManager
from chat_bridge.replies import CommandHandler

logging.basicConfig(level=logging.INFO)


class ChatBridgeCog(commands.Cog):
    """Relays chat commands to the game API and answers in the same channel."""

    def __init__(self, bot: commands.Bot, handler: CommandHandler, channel_name: str = "", manager=None):
        self.bot = bot
        self.handler = handler
        self.channel_name = (channel_name or "").strip().lower()
        self.manager = manager

    @commands.Cog.listener()
    async def on_ready(self):
        """Runs each time the bot connects to Discord."""
        logging.info(f"Success! {self.bot.user} is online and relaying bets.")
        if self.manager is not None:
            self.manager.mark_open()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return
        if self.channel_name and getattr(message.channel, "name", "").lower() != self.channel_name:
            return

        reply = await self.handler.handle(message.author.name, message.content)
        if reply:
            await message.channel.send(reply)


def build_bot() -> commands.Bot:
    intents = discord.Intents.default()
    intents.message_content = True
    # Commands are parsed by the handler, not by discord.py.
    return commands.Bot(command_prefix=commands.when_mentioned, intents=intents, help_command=None)


def make_connector(token: str, handler: CommandHandler, channel_name: str = ""):
    """A fresh Bot per attempt, so nothing from a dead session leaks into the next."""
    async def connect(manager: ConnectionManager):
        bot = build_bot()
        await bot.add_cog(ChatBridgeCog(bot, handler, channel_name, manager))
        try:
            async with bot:
                await bot.start(token, reconnect=False)
        except discord.LoginFailure:
            logging.error("Discord rejected the token; not reconnecting.")
            manager.close()
            raise
    return connect


async def main():
    if not settings.DISCORD_TOKEN:
        logging.error("ERROR: DISCORD_TOKEN not found in .env file.")
        return

    handler = CommandHandler(GameApiClient(settings.GAME_BASE))
    manager = ConnectionManager()
    await manager.run(make_connector(settings.DISCORD_TOKEN, handler, settings.CHAT_CHANNEL_NAME))


if __name__ == "__main__":
    asyncio.run(main())
