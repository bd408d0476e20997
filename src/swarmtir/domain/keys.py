"""Filesystem keys and correlation tokens.

Two identifier strategies:
- Domain keys: deterministic camel-case folding of a domain name, used as
  the domain's directory name under ``nodes/``.
- Correlation tokens: random alphanumeric strings naming return channels.
"""

from __future__ import annotations

import re
import secrets
import string

TOKEN_ALPHABET = string.ascii_lowercase + string.digits
MIN_TOKEN_LENGTH = 9

_WORD_DELIMITERS = re.compile(r"[^0-9A-Za-z]+")


def normalized_key(name: str) -> str:
    """Fold a domain name into a filesystem-safe camel-case key.

    Words are split on any run of non-alphanumeric characters. The first
    word is lower-cased, later words are capitalized::

        normalized_key("local")          -> "local"
        normalized_key("Remote Domain")  -> "remoteDomain"
        normalized_key("edge/node-2")    -> "edgeNode2"

    Returns an empty string when *name* has no alphanumeric characters.
    """
    words = [w for w in _WORD_DELIMITERS.split(str(name)) if w]
    return "".join(
        word.lower() if idx == 0 else word[:1].upper() + word[1:].lower()
        for idx, word in enumerate(words)
    )


def correlation_token(length: int = MIN_TOKEN_LENGTH) -> str:
    """Return a fresh random token of *length* lowercase alphanumerics."""
    if length < MIN_TOKEN_LENGTH:
        msg = f"Correlation tokens need at least {MIN_TOKEN_LENGTH} characters, got {length}"
        raise ValueError(msg)
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


class TokenPool:
    """Hands out correlation tokens that are never repeated.

    One pool is kept per domain; a token drawn once is remembered for the
    pool's lifetime so a collision is redrawn rather than reused.
    """

    def __init__(self, length: int = MIN_TOKEN_LENGTH) -> None:
        self._length = length
        self._issued: set[str] = set()

    def draw(self) -> str:
        while True:
            token = correlation_token(self._length)
            if token not in self._issued:
                self._issued.add(token)
                return token

    def __contains__(self, token: object) -> bool:
        return token in self._issued

    def __len__(self) -> int:
        return len(self._issued)
