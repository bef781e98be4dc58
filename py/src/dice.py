# Dicerolling.
# Expression tree, evaluator, and grammar for dice roll inputs with named variables.

import logging
import random
import re
import typing
from dataclasses import dataclass, field
from enum import Enum

import config
from environment import UndefinedNameError
from pratt import PARENTHESES_PARSELET, ParseError, ParserBuilder
from tokenizer import Token, Tokenizer, TokenPattern

log = logging.getLogger(__name__)

ROLL_PATTERN = re.compile(r"(\d+)?d(\d+)(?:k(\d+))?", re.IGNORECASE)
STRIKE = "~~"

NATURAL_TWENTY = "Natty!!"
NATURAL_ONE = "Natty..."


class AssignmentError(TypeError):
    pass


# A variable's stored definition names itself, directly or through others.
class CyclicReferenceError(RecursionError):
    pass


class MessageKind(Enum):
    ROLL = "roll"  # dice breakdowns and their flavor text
    LOOKUP = "lookup"  # variable resolution
    BANG = "bang"  # anything absorbed by a `!`


class Message(typing.NamedTuple):
    kind: MessageKind
    text: str


class ExpressionResult(typing.NamedTuple):
    value: int
    trace: str
    messages: tuple[Message, ...] = ()


# Expression nodes. Each node owns its children; none are shared.


@dataclass(frozen=True)
class Literal:
    value: int


@dataclass(frozen=True)
class DiceRoll:
    text: str  # as written, e.g. `4d6k3`
    count: int
    sides: int
    keep: int

    @staticmethod
    def from_text(text: str) -> "DiceRoll":
        found = ROLL_PATTERN.fullmatch(text)
        if found is None:
            raise ValueError(f"Not a dice roll: {text}")
        count = int(found.group(1)) if found.group(1) else 1
        keep = int(found.group(3)) if found.group(3) else count
        return DiceRoll(text, count, int(found.group(2)), keep)


@dataclass(frozen=True)
class VariableRef:
    name: str


class BinaryKind(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"


@dataclass(frozen=True)
class BinaryOp:
    kind: BinaryKind
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Negate:
    operand: "Expr"


# Collapses its operand to a plain value.
@dataclass(frozen=True)
class Bang:
    operand: "Expr"


@dataclass(frozen=True)
class Advantage:
    operand: "Expr"


@dataclass(frozen=True)
class Disadvantage:
    operand: "Expr"


@dataclass(frozen=True)
class Assign:
    target: "Expr"
    value: "Expr"


Expr = (
    Literal
    | DiceRoll
    | VariableRef
    | BinaryOp
    | Negate
    | Bang
    | Advantage
    | Disadvantage
    | Assign
)


# What an evaluation needs beyond the tree itself.
# `lookups` is the chain of variable names currently being resolved.
@dataclass
class EvaluationContext:
    env: typing.Any
    rng: random.Random
    parse: typing.Callable[[str], Expr]
    lookups: list[str] = field(default_factory=list)


def single_roll(size: int, rng: random.Random) -> int:
    if size == 0:
        return 0
    else:
        return rng.randint(1, size)


def _join(values: list[int]) -> str:
    return ",".join(str(v) for v in values)


def _strike(text: str) -> str:
    return STRIKE + text.replace(STRIKE, "") + STRIKE


def _evaluate_roll(node: DiceRoll, context: EvaluationContext) -> ExpressionResult:
    rolls = sorted(
        (single_roll(node.sides, context.rng) for _ in range(node.count)),
        reverse=True,
    )
    # keep the highest `keep` dice
    kept = rolls[: node.keep]
    discarded = rolls[node.keep :]

    breakdown = f"{node.text} → [{_join(kept)}]"
    if discarded:
        breakdown = f"{node.text} → [{_join(kept)},{_strike(_join(discarded))}]"
    messages = [Message(MessageKind.ROLL, breakdown)]

    if len(kept) == 1 and node.sides == 20:
        if kept[0] == 20:
            messages.append(Message(MessageKind.ROLL, NATURAL_TWENTY))
        elif kept[0] == 1:
            messages.append(Message(MessageKind.ROLL, NATURAL_ONE))
    if node.keep > node.count:
        messages.append(
            Message(
                MessageKind.ROLL,
                f"Warning: keeping more dice than were rolled. Ignoring keep. (in {node.text})",
            )
        )
    return ExpressionResult(sum(kept), node.text, tuple(messages))


def _evaluate_lookup(node: VariableRef, context: EvaluationContext) -> ExpressionResult:
    if node.name in context.lookups:
        chain = " → ".join(context.lookups + [node.name])
        raise CyclicReferenceError(f"Variable refers back to itself: {chain}")
    if len(context.lookups) >= config.MAX_LOOKUP_DEPTH:
        chain = " → ".join(context.lookups + [node.name])
        raise CyclicReferenceError(f"Variables nested too deeply: {chain}")

    stored = context.env.get(node.name)
    log.debug(f"Resolving {node.name} as {stored}")
    context.lookups.append(node.name)
    try:
        result = evaluate(context.parse(stored), context)
    finally:
        context.lookups.pop()
    return ExpressionResult(
        result.value,
        node.name,
        (Message(MessageKind.LOOKUP, f"{node.name} → {stored}"),) + result.messages,
    )


def _divide(left: int, right: int) -> int:
    return left // right


ARITHMETICS: dict[BinaryKind, typing.Callable[[int, int], int]] = {
    BinaryKind.ADD: lambda x, y: x + y,
    BinaryKind.SUB: lambda x, y: x - y,
    BinaryKind.MUL: lambda x, y: x * y,
    BinaryKind.DIV: _divide,
}


# Evaluate the operand twice and keep one run. Ties keep the first run.
# The other run's messages are struck through.
def _evaluate_twice(
    operand: Expr, context: EvaluationContext, higher: bool, suffix: str
) -> ExpressionResult:
    first = evaluate(operand, context)
    second = evaluate(operand, context)
    if higher:
        take_first = first.value >= second.value
    else:
        take_first = first.value <= second.value
    kept, other = (first, second) if take_first else (second, first)
    return ExpressionResult(
        kept.value,
        f"({kept.trace}) {suffix}",
        kept.messages
        + tuple(Message(m.kind, _strike(m.text)) for m in other.messages),
    )


def _evaluate_assign(node: Assign, context: EvaluationContext) -> ExpressionResult:
    if not isinstance(node.target, VariableRef):
        raise AssignmentError(
            f"Cannot assign to {describe(node.target)}: only names can be assigned."
        )
    result = evaluate(node.value, context)
    trace = _operand_trace(node.value, result.trace)
    context.env.set(node.target.name, trace)
    log.debug(f"Assigned {node.target.name} = {trace}")
    return ExpressionResult(
        result.value,
        f"{node.target.name} = {trace}",
        tuple(m for m in result.messages if m.kind != MessageKind.ROLL),
    )


# Assignments used as operands are parenthesized so the enclosing trace reparses
# to the same tree.
def _operand_trace(node: Expr, trace: str) -> str:
    if isinstance(node, Assign):
        return f"({trace})"
    return trace


# Evaluate an expression tree, rolling any dice it contains. Recursive.
def evaluate(node: Expr, context: EvaluationContext) -> ExpressionResult:
    if isinstance(node, Literal):
        return ExpressionResult(node.value, str(node.value))
    if isinstance(node, DiceRoll):
        return _evaluate_roll(node, context)
    if isinstance(node, VariableRef):
        return _evaluate_lookup(node, context)
    if isinstance(node, BinaryOp):
        left = evaluate(node.left, context)
        right = evaluate(node.right, context)
        return ExpressionResult(
            ARITHMETICS[node.kind](left.value, right.value),
            f"({_operand_trace(node.left, left.trace)} {node.kind.value} "
            f"{_operand_trace(node.right, right.trace)})",
            left.messages + right.messages,
        )
    if isinstance(node, Negate):
        result = evaluate(node.operand, context)
        return ExpressionResult(
            -result.value,
            f"-{_operand_trace(node.operand, result.trace)}",
            result.messages,
        )
    if isinstance(node, Bang):
        result = evaluate(node.operand, context)
        return ExpressionResult(
            result.value,
            str(result.value),
            tuple(Message(MessageKind.BANG, m.text) for m in result.messages),
        )
    if isinstance(node, Advantage):
        return _evaluate_twice(node.operand, context, True, "@advantage")
    if isinstance(node, Disadvantage):
        return _evaluate_twice(node.operand, context, False, "@disadvantage")
    if isinstance(node, Assign):
        return _evaluate_assign(node, context)
    raise TypeError(f"Unknown expression node: {node!r}")


# Render an unevaluated tree the way it would be written, without rolling anything.
def describe(node: Expr) -> str:
    if isinstance(node, Literal):
        return str(node.value)
    if isinstance(node, DiceRoll):
        return node.text
    if isinstance(node, VariableRef):
        return node.name
    if isinstance(node, BinaryOp):
        left = _operand_trace(node.left, describe(node.left))
        right = _operand_trace(node.right, describe(node.right))
        return f"({left} {node.kind.value} {right})"
    if isinstance(node, Negate):
        return f"-{_operand_trace(node.operand, describe(node.operand))}"
    if isinstance(node, Bang):
        return f"{_operand_trace(node.operand, describe(node.operand))}!"
    if isinstance(node, Advantage):
        return f"({describe(node.operand)}) @advantage"
    if isinstance(node, Disadvantage):
        return f"({describe(node.operand)}) @disadvantage"
    if isinstance(node, Assign):
        return f"{describe(node.target)} = {_operand_trace(node.value, describe(node.value))}"
    raise TypeError(f"Unknown expression node: {node!r}")


# Grammar.

# fmt: off
TOKEN_SPEC = [
    TokenPattern("+="),
    TokenPattern("-="),
    TokenPattern("+"),
    TokenPattern("-"),
    TokenPattern("*"),
    TokenPattern("/"),
    TokenPattern("("),
    TokenPattern(")"),
    TokenPattern("!"),
    TokenPattern("="),
    TokenPattern(re.compile(r"@\s*a(d(v(a(n(t(a(g(e)?)?)?)?)?)?)?)?\b", re.IGNORECASE), "ADVANTAGE"),
    TokenPattern(re.compile(r"@\s*d(i(s(a(d(v(a(n(t(a(g(e)?)?)?)?)?)?)?)?)?)?)?\b", re.IGNORECASE), "DISADVANTAGE"),
    TokenPattern(re.compile(r"(\d+)?d(\d+)(k\d+)?\b", re.IGNORECASE), "ROLL"),
    TokenPattern(re.compile(r"[a-zA-Z_][\w.]*"), "NAME"),
    TokenPattern(re.compile(r"\d+"), "NUMBER"),
]
# fmt: on

tokenize = Tokenizer(TOKEN_SPEC)


class Precedence:
    ASSIGN = 10
    AT = 20
    ADD_SUB = 30
    MUL_DIV = 40
    BANG = 50
    NEGATE = 60


def _binary(kind: BinaryKind):
    def _combine(left: Expr, token: Token, right: Expr) -> Expr:
        return BinaryOp(kind, left, right)

    return _combine


# `a += x` reads `a` through a bang so its current value is reused, not rerolled.
def _compound_assign(kind: BinaryKind):
    def _combine(left: Expr, token: Token, right: Expr) -> Expr:
        return Assign(left, BinaryOp(kind, Bang(left), right))

    return _combine


# fmt: off
parse: typing.Callable[[str], Expr] = (
    ParserBuilder[Expr](tokenize)
    .register_prefix("NUMBER", lambda parser, token: Literal(int(token.lexeme)))
    .register_prefix("ROLL", lambda parser, token: DiceRoll.from_text(token.lexeme))
    .register_prefix("NAME", lambda parser, token: VariableRef(token.lexeme))
    .register_prefix("(", PARENTHESES_PARSELET)

    .prefix("-", Precedence.NEGATE, lambda token, right: Negate(right))

    .postfix("!", Precedence.BANG, lambda left, token: Bang(left))

    .postfix("ADVANTAGE", Precedence.AT, lambda left, token: Advantage(left))
    .postfix("DISADVANTAGE", Precedence.AT, lambda left, token: Disadvantage(left))

    .infix_left("/", Precedence.MUL_DIV, _binary(BinaryKind.DIV))
    .infix_left("*", Precedence.MUL_DIV, _binary(BinaryKind.MUL))
    .infix_left("+", Precedence.ADD_SUB, _binary(BinaryKind.ADD))
    .infix_left("-", Precedence.ADD_SUB, _binary(BinaryKind.SUB))

    .infix_left("+=", Precedence.ASSIGN, _compound_assign(BinaryKind.ADD))
    .infix_left("-=", Precedence.ASSIGN, _compound_assign(BinaryKind.SUB))
    .infix_left("=", Precedence.ASSIGN, lambda left, token, right: Assign(left, right))

    .construct()
)
# fmt: on


# Parse and evaluate `source` against a user's environment view.
# Pass a seeded `rng` to replay rolls deterministically.
def execute(
    source: str, env, rng: random.Random | None = None
) -> ExpressionResult:
    if len(source.strip()) < 1:
        raise ParseError("Roll formula is empty.")
    if rng is None:
        rng = random.Random()
    context = EvaluationContext(env=env, rng=rng, parse=parse)
    return evaluate(parse(source), context)


