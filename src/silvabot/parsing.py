"""Command text parsing: prefix detection and quote-aware argument splitting."""

from __future__ import annotations

from dataclasses import dataclass, field

_QUOTES = frozenset({'"', "'"})


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: list[str] = field(default_factory=list)
    raw_args: str = ""  # argument text exactly as typed, after the command token


def split_args(text: str) -> list[str]:
    """Split on whitespace, keeping quoted runs together.

    A run opened by ``"`` or ``'`` lasts until the same quote character;
    the other quote character is literal inside it. An unterminated quote
    extends to the end of the text. Quotes themselves are dropped, and an
    explicitly quoted empty string yields an empty argument.
    """
    args: list[str] = []
    current: list[str] = []
    quote: str | None = None
    has_token = False

    for ch in text:
        if quote is not None:
            if ch == quote:
                quote = None
            else:
                current.append(ch)
        elif ch in _QUOTES:
            quote = ch
            has_token = True
        elif ch.isspace():
            if has_token:
                args.append("".join(current))
                current = []
                has_token = False
        else:
            current.append(ch)
            has_token = True

    if has_token:
        args.append("".join(current))
    return args


def parse_command(text: str, prefix: str) -> ParsedCommand | None:
    """Return the command carried by ``text``, or None if it is not one.

    ``text`` is a command iff it starts with exactly ``prefix``.
    """
    if not prefix or not text.startswith(prefix):
        return None
    body = text[len(prefix) :].lstrip()
    if not body:
        return None

    tokens = split_args(body)
    if not tokens or not tokens[0]:
        return None

    parts = body.split(maxsplit=1)
    raw_args = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=tokens[0].lower(), args=tokens[1:], raw_args=raw_args)
