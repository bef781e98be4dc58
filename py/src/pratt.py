# Generic Pratt (top-down operator precedence) parsing.
# http://effbot.org/zone/simple-top-down-parsing.htm
# https://journal.stuffwithstuff.com/2011/03/19/pratt-parsers-expression-parsing-made-easy/
#
# Parselets are looked up by token kind. Prefix parselets start an expression,
# infix parselets extend an already-parsed left operand. Postfix operators are
# infix parselets that never parse a right operand.

import math
import typing

from tokenizer import Token, Tokenizer

E = typing.TypeVar("E")


class ParseError(SyntaxError):
    pass


# Null denotation: starts an expression from the token just consumed.
class PrefixParselet(typing.Generic[E]):
    def parse(self, parser: "Parser[E]", token: Token) -> E:
        raise NotImplementedError("Prefix parselet behavior is missing.")


# Left denotation: combines `left` with the token just consumed.
# Binding strength is `precedence`; higher binds tighter.
class InfixParselet(typing.Generic[E]):
    precedence: float = 0

    def parse(self, parser: "Parser[E]", left: E, token: Token) -> E:
        raise NotImplementedError("Infix parselet behavior is missing.")


class CallablePrefixParselet(PrefixParselet[E]):
    def __init__(self, func: typing.Callable[["Parser[E]", Token], E]) -> None:
        self.func = func

    def parse(self, parser, token):
        return self.func(parser, token)


# Unary operator. The operand is parsed at `precedence`, so only operators
# binding tighter than this one end up inside it.
class PrefixOperatorParselet(PrefixParselet[E]):
    def __init__(
        self, precedence: float, combine: typing.Callable[[Token, E], E]
    ) -> None:
        self.precedence = precedence
        self.combine = combine

    def parse(self, parser, token):
        right = parser.parse(self.precedence)
        return self.combine(token, right)


class PostfixOperatorParselet(InfixParselet[E]):
    def __init__(
        self, precedence: float, combine: typing.Callable[[E, Token], E]
    ) -> None:
        self.precedence = precedence
        self.combine = combine

    def parse(self, parser, left, token):
        return self.combine(left, token)


class BinaryOperatorParselet(InfixParselet[E]):
    def __init__(
        self,
        precedence: float,
        combine: typing.Callable[[E, Token, E], E],
        right_assoc: bool = False,
    ) -> None:
        self.precedence = precedence
        self.combine = combine
        self.right_assoc = right_assoc

    # Recursing just below our own precedence lets a repeat of this operator
    # nest into the right operand.
    def right_precedence(self) -> float:
        if self.right_assoc:
            return math.nextafter(self.precedence, -math.inf)
        return self.precedence

    def parse(self, parser, left, token):
        right = parser.parse(self.right_precedence())
        return self.combine(left, token, right)


# A parenthesized group yields whatever is inside it.
class ParenthesesParselet(PrefixParselet[E]):
    def __init__(self, close_kind: str = ")") -> None:
        self.close_kind = close_kind

    def parse(self, parser, token):
        expr = parser.parse()
        parser.expect(self.close_kind, "expected closing parenthesis")
        return expr


PARENTHESES_PARSELET: ParenthesesParselet = ParenthesesParselet()


class Parser(typing.Generic[E]):
    def __init__(
        self,
        tokens: typing.Sequence[Token],
        prefix_parselets: typing.Mapping[str, PrefixParselet[E]],
        infix_parselets: typing.Mapping[str, InfixParselet[E]],
    ) -> None:
        self.tokens = list(tokens)
        self.pos = 0
        self.prefix_parselets = prefix_parselets
        self.infix_parselets = infix_parselets

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def peek(self) -> Token | None:
        if self.at_end():
            return None
        return self.tokens[self.pos]

    def consume(self) -> Token:
        if self.at_end():
            raise ParseError("Parse error: unexpected end of input. Missing operands?")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    # Consume the next token only if it is of the `expected` kind.
    def match(self, expected: str) -> bool:
        token = self.peek()
        if token is None or token.kind != expected:
            return False
        self.consume()
        return True

    def expect(self, expected: str, message: str | None = None) -> Token:
        token = self.peek()
        if token is None or token.kind != expected:
            found = "end of input" if token is None else f"`{token.lexeme}`"
            reason = message if message else f"expected `{expected}`"
            raise ParseError(f"Parse error: {reason}, found {found}.")
        return self.consume()

    # Precedence of the next token's infix parselet. Anything else ends an expression.
    def next_precedence(self) -> float:
        token = self.peek()
        if token is None:
            return 0
        parselet = self.infix_parselets.get(token.kind)
        if parselet is None:
            return 0
        return parselet.precedence

    # Parse an expression, continuing while the upcoming operator binds tighter than `precedence`. Recursive.
    def parse(self, precedence: float = 0) -> E:
        token = self.consume()
        prefix = self.prefix_parselets.get(token.kind)
        if prefix is None:
            raise ParseError(
                f"Parse error at `{token.lexeme}`: no prefix handler for {token.kind}."
            )
        left = prefix.parse(self, token)

        while precedence < self.next_precedence():
            token = self.consume()
            left = self.infix_parselets[token.kind].parse(self, left, token)
        return left

    # Parse a complete expression. Leftover tokens mean it was malformed.
    def parse_all(self) -> E:
        expr = self.parse()
        stray = self.peek()
        if stray is not None:
            raise ParseError(
                f"Parse error at `{stray.lexeme}`: unexpected token. Missing operators?"
            )
        return expr


# Fluent registration of parselets. Later registrations for the same kind and
# role replace earlier ones.
class ParserBuilder(typing.Generic[E]):
    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer
        self.prefix_parselets: dict[str, PrefixParselet[E]] = {}
        self.infix_parselets: dict[str, InfixParselet[E]] = {}

    def register_prefix(
        self,
        kind: str,
        parselet: PrefixParselet[E] | typing.Callable[[Parser[E], Token], E],
    ) -> "ParserBuilder[E]":
        if not isinstance(parselet, PrefixParselet):
            parselet = CallablePrefixParselet(parselet)
        self.prefix_parselets[kind] = parselet
        return self

    def register_infix(self, kind: str, parselet: InfixParselet[E]) -> "ParserBuilder[E]":
        self.infix_parselets[kind] = parselet
        return self

    def prefix(
        self, kind: str, precedence: float, combine: typing.Callable[[Token, E], E]
    ) -> "ParserBuilder[E]":
        return self.register_prefix(kind, PrefixOperatorParselet(precedence, combine))

    def postfix(
        self, kind: str, precedence: float, combine: typing.Callable[[E, Token], E]
    ) -> "ParserBuilder[E]":
        return self.register_infix(kind, PostfixOperatorParselet(precedence, combine))

    def infix_left(
        self,
        kind: str,
        precedence: float,
        combine: typing.Callable[[E, Token, E], E],
    ) -> "ParserBuilder[E]":
        return self.register_infix(kind, BinaryOperatorParselet(precedence, combine))

    def infix_right(
        self,
        kind: str,
        precedence: float,
        combine: typing.Callable[[E, Token, E], E],
    ) -> "ParserBuilder[E]":
        return self.register_infix(
            kind, BinaryOperatorParselet(precedence, combine, right_assoc=True)
        )

    # Freeze the current tables into a parse function accepting a source
    # string (tokenized with this builder's tokenizer) or a token list.
    def construct(self) -> typing.Callable[[str | typing.Sequence[Token]], E]:
        tokenizer = self.tokenizer
        prefix_parselets = dict(self.prefix_parselets)
        infix_parselets = dict(self.infix_parselets)

        def parse(source: str | typing.Sequence[Token]) -> E:
            if isinstance(source, str):
                if tokenizer is None:
                    raise TypeError("Parser was built without a tokenizer; pass tokens.")
                tokens = tokenizer.tokenize(source)
            else:
                tokens = source
            return Parser(tokens, prefix_parselets, infix_parselets).parse_all()

        return parse
