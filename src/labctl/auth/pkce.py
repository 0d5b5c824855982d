"""PKCE (:rfc:`7636`) and CSRF ``state`` generation for the login flow."""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import NamedTuple

from labctl.exceptions import EntropyError

VERIFIER_BYTES = 32
STATE_BYTES = 16
CHALLENGE_METHOD = "S256"


class PKCEParams(NamedTuple):
    """Per-login secrets: the verifier is kept local, the rest go in the authorize URL."""

    code_verifier: str
    code_challenge: str
    state: str


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _random_token(nbytes: int) -> str:
    try:
        raw = secrets.token_bytes(nbytes)
    except (OSError, NotImplementedError) as exc:
        raise EntropyError(f"secure random source unavailable: {exc}") from exc
    return _b64url(raw)


def code_challenge_for(code_verifier: str) -> str:
    """Return the S256 challenge for *code_verifier*."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce() -> PKCEParams:
    """Generate a fresh verifier/challenge pair and an independent ``state``.

    Raises:
        EntropyError: If the OS random source fails. This aborts the login;
            it is never retried.
    """
    verifier = _random_token(VERIFIER_BYTES)
    state = _random_token(STATE_BYTES)
    return PKCEParams(verifier, code_challenge_for(verifier), state)
