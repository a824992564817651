"""PKCE verifier/challenge generation (RFC 7636, S256 only)."""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD


def generate_verifier() -> str:
    """Return 32 random bytes as 43 URL-safe base64 characters."""
    return secrets.token_urlsafe(32)


def compute_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> PKCEPair:
    verifier = generate_verifier()
    return PKCEPair(verifier=verifier, challenge=compute_challenge(verifier))


__all__ = [
    "CHALLENGE_METHOD",
    "PKCEPair",
    "compute_challenge",
    "generate_pkce",
    "generate_verifier",
]
