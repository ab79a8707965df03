# ==============================================================================
# Session Token Issuer
# ==============================================================================
"""
Generates unguessable session tokens.

Tokens are 32 bytes from the OS CSPRNG encoded as unpadded base64url
(43 characters). There is no fallback generator: if the OS cannot supply
randomness, session creation fails.
"""

import base64
import logging
import os
import re
from collections.abc import Callable

from attribution.core.errors import EntropySourceUnavailable

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


class TokenIssuer:
    """Issues URL-safe session tokens with 256 bits of entropy."""

    def __init__(self, random_bytes: Callable[[int], bytes] = os.urandom):
        self._random_bytes = random_bytes

    def issue(self) -> str:
        """
        Issue a new token.

        Raises:
            EntropySourceUnavailable: If the randomness source cannot be read
        """
        try:
            raw = self._random_bytes(TOKEN_BYTES)
        except (OSError, NotImplementedError) as e:
            logger.critical("Randomness source unavailable: %s", e)
            raise EntropySourceUnavailable(str(e)) from e

        if len(raw) != TOKEN_BYTES:
            raise EntropySourceUnavailable(
                f"Randomness source returned {len(raw)} bytes, expected {TOKEN_BYTES}"
            )
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def is_well_formed(token: str | None) -> bool:
    """Cheap shape check before any store lookup."""
    return bool(token) and TOKEN_PATTERN.match(token) is not None
