"""
Access token generation and parsing.

Tokens are the only credential a recipient holds, so they come straight from
the CSPRNG and carry nothing about the resource they unlock. Where a token's
record lives on disk is decided separately by a locator strategy.
"""

import hashlib
import re
import secrets
from typing import Callable, NewType, Optional

from sharegate.core.errors import InvalidToken

AccessToken = NewType("AccessToken", str)

TOKEN_BYTES = 32
MIN_TOKEN_BYTES = 16
_ALPHABET = re.compile(r"[A-Za-z0-9_-]+")


def encoded_length(nbytes: int) -> int:
    """Length of ``secrets.token_urlsafe(nbytes)`` (unpadded base64)."""
    return (nbytes * 4 + 2) // 3


class TokenCodec:
    """Generates and validates fixed-length URL-safe tokens."""

    def __init__(self, nbytes: int = TOKEN_BYTES):
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"Tokens need at least {MIN_TOKEN_BYTES} bytes of entropy")
        self.nbytes = nbytes
        self.length = encoded_length(nbytes)

    def generate(self, taken: Optional[Callable[[str], bool]] = None) -> AccessToken:
        """Create a new token.

        Args:
            taken: Optional predicate reporting whether a token is already bound.
                A colliding token is thrown away and a new one drawn.

        Returns:
            A fresh token.
        """
        while True:
            token = secrets.token_urlsafe(self.nbytes)
            if taken is None or not taken(token):
                return AccessToken(token)

    def parse(self, raw: object) -> AccessToken:
        """Validate untrusted input as a token.

        Raises:
            InvalidToken: If the input has the wrong type, length or alphabet.
        """
        if not isinstance(raw, str) or len(raw) != self.length:
            raise InvalidToken("Token has the wrong length")
        if not _ALPHABET.fullmatch(raw):
            raise InvalidToken("Token contains invalid characters")
        return AccessToken(raw)


# ----------------------------------------------------------------------
# Locator strategies: token -> record directory name
# ----------------------------------------------------------------------

def hashed_locator(token: str) -> str:
    """Record name that does not reveal the token when the directory is listed."""
    return hashlib.sha256(token.encode("ascii")).hexdigest()


def literal_locator(token: str) -> str:
    """Use the token itself as the record name."""
    return token


LOCATORS = {
    "hashed": hashed_locator,
    "literal": literal_locator,
}


def get_locator(name: str) -> Callable[[str], str]:
    try:
        return LOCATORS[name]
    except KeyError:
        raise ValueError(f"Unknown locator strategy: {name}") from None
