from __future__ import annotations

import hmac
import secrets

# 16 random bytes: 128 bits of entropy per code.
CONFIRMATION_CODE_BYTES = 16


def generate_confirmation_code() -> str:
    """Return a fresh one-time confirmation code as a lowercase hex string."""
    return secrets.token_hex(CONFIRMATION_CODE_BYTES)


def normalize_submitted_code(value: str | None) -> str:
    return str(value or "").strip().lower()


def codes_match(expected: str, submitted: str) -> bool:
    """Constant-time comparison; never short-circuits on a partial match."""
    return hmac.compare_digest(
        expected.encode("utf-8"),
        normalize_submitted_code(submitted).encode("utf-8"),
    )
