# Tokenizing.
# Splits a source string into typed tokens given an ordered list of patterns.

import re
import typing

# Flags carried over by scoping them onto a pattern's own group.
_SCOPED_FLAGS = {
    re.ASCII: "a",
    re.IGNORECASE: "i",
    re.MULTILINE: "m",
    re.DOTALL: "s",
    re.VERBOSE: "x",
}
# Global inline flags like `(?i)`, already reflected in `Pattern.flags`.
_LEADING_INLINE_FLAGS = re.compile(r"\A(?:\(\?[aiLmsux]+\))+")
_WHITESPACE = re.compile(r"\s+")


class TokenizeError(SyntaxError):
    pass


# A single lexeme cut from the source, tagged with the kind of pattern that matched it.
class Token(typing.NamedTuple):
    kind: str
    lexeme: str

    def __repr__(self):
        return f"<{self.kind} {self.lexeme!r}>"


# A literal string or compiled regex, and the token kind it produces.
# Literal patterns default to their own text as the kind.
class TokenPattern(typing.NamedTuple):
    pattern: str | re.Pattern
    kind: str | None = None


def _normalize(spec) -> TokenPattern:
    if isinstance(spec, TokenPattern):
        pass
    elif isinstance(spec, (str, re.Pattern)):
        spec = TokenPattern(spec)
    else:
        spec = TokenPattern(*spec)

    if spec.kind is not None:
        return spec
    if isinstance(spec.pattern, str):
        return TokenPattern(spec.pattern, spec.pattern)
    raise ValueError(f"Regex token pattern needs a kind: {spec.pattern.pattern}")


def _as_regex_string(pattern: str | re.Pattern) -> str:
    if isinstance(pattern, str):
        return re.escape(pattern)
    if not isinstance(pattern.pattern, str):
        raise ValueError(f"Token patterns must be text, not {type(pattern.pattern).__name__}.")
    unsupported = pattern.flags & ~(re.UNICODE | sum(_SCOPED_FLAGS))
    if unsupported:
        raise ValueError(
            f"Unsupported flags {re.RegexFlag(unsupported)!r} on token pattern {pattern.pattern!r}"
        )

    source = _LEADING_INLINE_FLAGS.sub("", pattern.pattern)
    flags = "".join(
        letter for flag, letter in _SCOPED_FLAGS.items() if pattern.flags & flag
    )
    if pattern.flags & re.VERBOSE:
        # end any trailing comment before the group closes
        source += "\n"
    if flags:
        return f"(?{flags}:{source})"
    return source


class Tokenizer:
    def __init__(self, patterns: typing.Iterable) -> None:
        self.patterns: list[TokenPattern] = [_normalize(spec) for spec in patterns]
        if not self.patterns:
            raise ValueError("Tokenizer needs at least one pattern.")

        # Each alternative gets its own group so a match reports which pattern produced it.
        # Alternation order is registration order, so earlier patterns win ties.
        self.group_kinds: dict[str, str] = {}
        alternatives = []
        for i, spec in enumerate(self.patterns):
            group = f"_tok{i}"
            self.group_kinds[group] = spec.kind  # type: ignore
            alternatives.append(f"(?P<{group}>{_as_regex_string(spec.pattern)})")
        self.match_any = re.compile("|".join(alternatives))

    def __call__(self, source: str) -> list[Token]:
        return self.tokenize(source)

    def tokenize(self, source: str) -> list[Token]:
        tokens = []
        pos = 0
        end = len(source)
        while pos < end:
            skipped = _WHITESPACE.match(source, pos)
            if skipped:
                pos = skipped.end()
                if pos >= end:
                    break

            item = self.match_any.match(source, pos)
            if item is None or item.end() == pos:
                raise TokenizeError(
                    f"Couldn't interpret <{_bad_segment(source, pos)}> at column {pos + 1} of: {source}"
                )
            tokens.append(Token(self.group_kinds[item.lastgroup], item.group()))  # type: ignore
            pos = item.end()
        return tokens


# The run of non-space characters starting at `pos`, for error messages.
def _bad_segment(source: str, pos: int) -> str:
    stop = _WHITESPACE.search(source, pos)
    return source[pos : stop.start() if stop else len(source)]
