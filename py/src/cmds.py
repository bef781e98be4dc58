# Miscellaneous commands and subprocess command-running infrastructure.
import asyncio
import concurrent.futures
import functools
import logging
import typing

import calculator
from config import COMMAND_TIMEOUT
from discord.ext import commands
from pebble import ProcessPool
from utils import *

log = logging.getLogger(__name__)


# Wrapper for ProcessPool to allow use with asyncio run_in_executor
class PebbleExecutor(concurrent.futures.Executor):
    def __init__(self, max_workers, timeout=None):
        self.pool = ProcessPool(max_workers=max_workers)
        self.timeout = timeout

    def submit(self, fn, *args, **kwargs):
        return self.pool.schedule(fn, args=args, kwargs=kwargs, timeout=self.timeout)  # type: ignore

    def map(self, func, *iterables, timeout=None, chunksize=1):
        raise NotImplementedError("This wrapper does not support `map`.")

    def shutdown(self, wait=True):
        if wait:
            log.info("Closing workers...")
            self.pool.close()
        else:
            log.info("Stopping workers...")
            self.pool.stop()
        self.pool.join()
        log.info("Workers joined.")


# Since app commands cannot accept a >100 character description,
# swap that field for the brief when we register hybrid commands.
def swap_hybrid_command_description(hybrid: commands.HybridCommand):
    if not hybrid.app_command or not hybrid.brief:
        raise RuntimeError(
            f"Tried to swap missing description/brief on hybrid command {hybrid}"
        )
    hybrid.app_command.description = hybrid.brief


# Run `func` in a worker process so a runaway expression can be timed out
# without blocking the bot.
async def as_subprocess_command(
    ctx: commands.Context, func: typing.Callable[..., typing.Any], *args, **kwargs
) -> typing.Any:
    loop: asyncio.AbstractEventLoop = ctx.bot.loop
    executor: PebbleExecutor = ctx.bot.get_executor()
    cmd_future = loop.run_in_executor(
        executor, functools.partial(func, *args, **kwargs)
    )

    if not ctx.command:
        raise RuntimeError(f"Missing command for context {ctx}")

    output = f"Executing {ctx.command.name}: {ctx.kwargs}..."
    log.info(output)
    try:
        async with ctx.typing():
            output = await asyncio.wait_for(cmd_future, timeout=COMMAND_TIMEOUT)
    except Exception as err:
        cmd_future.cancel()
        output = (
            f"Command {ctx.command.name} with args {ctx.kwargs} raised error: {err}"
        )
        log.info(output)
        raise
    return output


def _calc(expression: str) -> str:
    output = "No result."
    try:
        output = f"{codeblock(expression)} ⇒ **{calculator.calculate(expression)}**"
    except Exception as err:
        log.info(f"Calculation error. {err}")
        output = f"Unable to parse {codeblock(expression)}.\n{codeblock(err, big=True)}"
    return output


@commands.hybrid_command(
    aliases=["c"],
    brief="Do some arithmetic",
    description=f"""
__**calc**__
Evaluates plain arithmetic, no dice.
__Arithmetic__ `+ - * / ^`
    `^` is power and groups right to left: `2^3^2` is `2^9`.
__Negation__ `-` binds tighter than anything else.
__Parentheses__ `( )` for associativity and order of operations.
    `{get_summon_prefix()}calc 3 / 3 + 4 * (3 ^ (2 - 1))`
""",
)
async def calc(
    ctx: commands.Context,
    *,
    expression: str = commands.parameter(description="The arithmetic to evaluate"),
):
    output = await as_subprocess_command(ctx, _calc, expression)
    await reply(ctx, output)


@calc.error
async def calc_error(ctx: commands.Context, error):
    if ignorable_check_failure(error):
        return
    if isinstance(error, commands.errors.MissingRequiredArgument):
        await reply(ctx, f"Nothing to calculate. {get_help_notice('calc')}")
        return
    await reply(ctx, f"{error}")
