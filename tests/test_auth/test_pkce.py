"""Tests for PKCE verifier/challenge and state generation."""

from __future__ import annotations

import base64
import hashlib
import re
from unittest.mock import patch

import pytest

from labctl.auth.pkce import code_challenge_for, generate_pkce
from labctl.exceptions import EntropyError, SecurityError

_B64URL = re.compile(r"^[A-Za-z0-9_-]+$")


class TestGeneratePkce:
    def test_challenge_is_s256_of_verifier(self) -> None:
        pkce = generate_pkce()
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(pkce.code_verifier.encode()).digest())
            .rstrip(b"=")
            .decode()
        )
        assert pkce.code_challenge == expected

    def test_values_are_unpadded_base64url(self) -> None:
        pkce = generate_pkce()
        for value in pkce:
            assert _B64URL.match(value)
            assert "=" not in value

    def test_lengths(self) -> None:
        pkce = generate_pkce()
        # 32 random bytes -> 43 chars, within the 43..128 verifier range.
        assert len(pkce.code_verifier) == 43
        assert len(pkce.code_challenge) == 43
        assert len(pkce.state) == 22

    def test_each_call_is_unique(self) -> None:
        results = [generate_pkce() for _ in range(20)]
        assert len({p.code_verifier for p in results}) == 20
        assert len({p.state for p in results}) == 20

    def test_state_is_independent_of_verifier(self) -> None:
        pkce = generate_pkce()
        assert pkce.state != pkce.code_verifier
        assert not pkce.code_verifier.startswith(pkce.state)

    def test_entropy_failure_raises(self) -> None:
        with patch(
            "labctl.auth.pkce.secrets.token_bytes",
            side_effect=OSError("getrandom failed"),
        ):
            with pytest.raises(EntropyError, match="random source unavailable") as exc_info:
                generate_pkce()
        assert isinstance(exc_info.value, SecurityError)


class TestCodeChallengeFor:
    def test_rfc7636_appendix_b_vector(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert code_challenge_for(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
