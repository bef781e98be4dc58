# Plain arithmetic calculator.
# The Pratt parser evaluating straight to numbers instead of building a tree.

import re

from pratt import PARENTHESES_PARSELET, ParserBuilder
from tokenizer import TokenPattern, Tokenizer

# fmt: off
TOKEN_SPEC = [
    TokenPattern("+"),
    TokenPattern("-"),
    TokenPattern("*"),
    TokenPattern("×", "*"),
    TokenPattern("/"),
    TokenPattern("÷", "/"),
    TokenPattern("^"),
    TokenPattern("("),
    TokenPattern(")"),
    TokenPattern(re.compile(r"\d+(\.\d*)?|\.\d+"), "NUMBER"),
]
# fmt: on

tokenize = Tokenizer(TOKEN_SPEC)


class Precedence:
    ADD_SUB = 10
    MUL_DIV = 20
    EXP = 30
    NEGATE = 40


def _number(parser, token) -> int | float:
    if "." in token.lexeme:
        return float(token.lexeme)
    return int(token.lexeme)


# Negative bases with fractional exponents have no real result.
def _power(base: int | float, exponent: int | float) -> int | float:
    result = base**exponent
    if isinstance(result, complex):
        raise ValueError(f"{base} ^ {exponent} has no real result.")
    return result


# fmt: off
_calculate = (
    ParserBuilder[int | float](tokenize)
    .register_prefix("NUMBER", _number)
    .register_prefix("(", PARENTHESES_PARSELET)
    .prefix("-", Precedence.NEGATE, lambda token, right: -right)

    .infix_right("^", Precedence.EXP, lambda left, token, right: _power(left, right))

    .infix_left("/", Precedence.MUL_DIV, lambda left, token, right: left / right)
    .infix_left("*", Precedence.MUL_DIV, lambda left, token, right: left * right)
    .infix_left("+", Precedence.ADD_SUB, lambda left, token, right: left + right)
    .infix_left("-", Precedence.ADD_SUB, lambda left, token, right: left - right)

    .construct()
)
# fmt: on


def calculate(source: str) -> int | float:
    if len(source.strip()) < 1:
        raise ValueError("Nothing to calculate.")
    result = _calculate(source)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result
