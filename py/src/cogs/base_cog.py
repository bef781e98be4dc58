# Base class for natty-bot cogs
import logging

from client import NattyClient
from discord.ext import commands

log = logging.getLogger(__name__)


class BaseCog(commands.Cog):
    def __init__(self, bot: NattyClient) -> None:
        self.bot = bot
