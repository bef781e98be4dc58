# Cog for dice roller commands
import asyncio
import logging
import weakref

import dice
from cmds import as_subprocess_command, swap_hybrid_command_description
from cogs.base_cog import BaseCog
from discord.ext import commands
from environment import UndefinedNameError, UserEnvironmentView
from utils import *

log = logging.getLogger(__name__)


def format_roll_result(result: dice.ExpressionResult) -> str:
    out = codeblock(result.trace) + f" ⇒ **{result.value}**"
    for message in result.messages:
        out += "\n" + message.text
    return out


# Runs in a worker process. `environment` is the manager proxy.
def _roll(formula: str, environment, user: str) -> str:
    output = "No result."
    try:
        result = dice.execute(formula, UserEnvironmentView(environment, user))
        output = format_roll_result(result)
    except Exception as err:
        log.info(f"Roll error. {err}")
        output = f"Roll error.\n{codeblock(err, big=True)}"
    return output


# One lock per user, dropped once no command is holding or waiting on it.
class UserLocks:
    def __init__(self) -> None:
        self.locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __getitem__(self, user: str) -> asyncio.Lock:
        lock = self.locks.get(user)
        if lock is None:
            lock = asyncio.Lock()
            self.locks[user] = lock
        return lock

    def __len__(self) -> int:
        return len(self.locks)


class DiceRoller(BaseCog):
    def __init__(self, bot) -> None:
        super().__init__(bot)
        # one roll at a time per user, since rolls may assign variables
        self.user_locks = UserLocks()
        swap_hybrid_command_description(self.roll)
        swap_hybrid_command_description(self.vars)

    def user_view(self, ctx: commands.Context) -> UserEnvironmentView:
        return UserEnvironmentView(self.bot.get_environment(), ctx.author.id)

    @commands.hybrid_command(
        aliases=["r"],
        brief="Roll some dice",
        description=f"""
    __**roll**__
    Rolls some dice and does some math.
    See: (https://en.wikipedia.org/wiki/Dice_notation).
    Roughly in order of precedence, loosest first:

    __Assignment__ `=`, `+=`, `-=`
        `<name> = <expr>` saves the expression, not its result. Using the name rolls it again.
        `{get_summon_prefix()}roll hp = 3d8 + 4` then `{get_summon_prefix()}roll hp`
        `<name> += <expr>` adds to the name's current value without rerolling it.
    __Advantage__ `@advantage` / `@adv` / `@a`, `@disadvantage` / `@dis` / `@d`
        Rolls the whole expression twice, keeping the higher (or lower) result.
        `{get_summon_prefix()}roll 1d20 + 5 @adv`
    __Arithmetic__ `+ - * /`
        `/` is integer division, rounding down.
    __Bang__ `!`
        `<expr>!` freezes the expression to its value.
    __Negation__ `-`
    __Dice roll__ `<N>d<S>k<K>`
        Rolls N dice of size S, keeping the K highest. N omitted will roll 1 die.
        `{get_summon_prefix()}roll 4d6k3`
    __Parentheses__ `( )` for associativity and order of operations.
    """,
    )
    async def roll(
        self,
        ctx: commands.Context,
        *,
        formula: str = commands.parameter(
            description="The dice roll formula to evaluate"
        ),
    ):
        user = str(ctx.author.id)
        async with self.user_locks[user]:
            output = await as_subprocess_command(
                ctx, _roll, formula, self.bot.get_environment(), user
            )
        await reply(ctx, output)

    @roll.error
    async def roll_error(self, ctx: commands.Context, error):
        if ignorable_check_failure(error):
            return
        await reply(ctx, f"{error}")

    @commands.hybrid_group(
        aliases=["v"],
        brief="Inspect your roll variables",
        description=f"""
    __**vars**__
    Names you assign with `{get_summon_prefix()}roll <name> = <expr>` are kept per user.
    Use these subcommands to look at or forget them.
    """,
    )
    async def vars(self, ctx: commands.Context):
        await reply(ctx, get_help_notice("vars"))

    @vars.command(aliases=["l", "ls"], brief="List your variables")
    async def list(self, ctx: commands.Context):
        vlist = [f"{name} = {contents}" for name, contents in self.user_view(ctx).names().items()]
        if not vlist:
            await reply(ctx, "No variables defined.")
            return
        output = f"{len(vlist)} variable(s) available: \n" + codeblock(
            "\n".join(vlist), big=True
        )
        await reply(ctx, text=output)

    @vars.command(aliases=["d", "del"], brief="Forget one of your variables")
    async def delete(self, ctx: commands.Context, name: str):
        async with self.user_locks[str(ctx.author.id)]:
            try:
                contents = self.user_view(ctx).delete(name)
            except UndefinedNameError as err:
                await reply(ctx, f"Error deleting variable: `{err}`")
                return
        await reply(ctx, f"Deleted variable: `{name} = {contents}`")
