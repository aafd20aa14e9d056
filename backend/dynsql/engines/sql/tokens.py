"""
Token scanning for ``${...}`` substitutions and ``#{...}`` placeholders.

A backslash before the open token (``\\${``) keeps it literal; a backslash
before the close token inside a token keeps the close token as content.
An open token without a matching close is left as text.
"""

from collections.abc import Callable

SUBSTITUTION_OPEN = "${"
PLACEHOLDER_OPEN = "#{"
TOKEN_CLOSE = "}"


class GenericTokenParser:
    """Replace every ``open ... close`` token in a text with ``handler(content)``."""

    __slots__ = ("open_token", "close_token", "handler")

    def __init__(self, open_token: str, close_token: str, handler: Callable[[str], str]) -> None:
        self.open_token = open_token
        self.close_token = close_token
        self.handler = handler

    def parse(self, text: str | None) -> str:
        if not text:
            return ""
        start = text.find(self.open_token)
        if start == -1:
            return text
        open_len = len(self.open_token)
        close_len = len(self.close_token)
        builder: list[str] = []
        offset = 0
        while start > -1:
            if start > 0 and text[start - 1] == "\\":
                # escaped open token: drop the backslash, keep the token
                builder.append(text[offset : start - 1])
                builder.append(self.open_token)
                offset = start + open_len
            else:
                builder.append(text[offset:start])
                offset = start + open_len
                expression: list[str] = []
                end = text.find(self.close_token, offset)
                while end > -1:
                    if end > offset and text[end - 1] == "\\":
                        expression.append(text[offset : end - 1])
                        expression.append(self.close_token)
                        offset = end + close_len
                        end = text.find(self.close_token, offset)
                    else:
                        expression.append(text[offset:end])
                        break
                if end == -1:
                    builder.append(text[start:])
                    offset = len(text)
                else:
                    builder.append(self.handler("".join(expression)))
                    offset = end + close_len
            start = text.find(self.open_token, offset)
        if offset < len(text):
            builder.append(text[offset:])
        return "".join(builder)


def find_tokens(text: str | None, open_token: str, close_token: str = TOKEN_CLOSE) -> list[str]:
    """Contents of every unescaped token in *text*, in order."""
    found: list[str] = []

    def _collect(content: str) -> str:
        found.append(content)
        return ""

    GenericTokenParser(open_token, close_token, _collect).parse(text)
    return found


def contains_token(text: str | None, open_token: str, close_token: str = TOKEN_CLOSE) -> bool:
    return bool(find_tokens(text, open_token, close_token))
