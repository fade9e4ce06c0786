from __future__ import annotations

import string

from app.modules.deletion.domain.codes import (
    CONFIRMATION_CODE_BYTES,
    codes_match,
    generate_confirmation_code,
    normalize_submitted_code,
)


def test_generated_codes_are_hex_with_128_bits_of_entropy() -> None:
    code = generate_confirmation_code()
    assert len(code) == CONFIRMATION_CODE_BYTES * 2
    assert CONFIRMATION_CODE_BYTES * 8 >= 120
    assert set(code) <= set(string.hexdigits.lower())


def test_generated_codes_are_distinct_per_call() -> None:
    codes = {generate_confirmation_code() for _ in range(2000)}
    assert len(codes) == 2000


def test_codes_match_accepts_exact_and_normalized_submission() -> None:
    code = generate_confirmation_code()
    assert codes_match(code, code)
    assert codes_match(code, f"  {code.upper()}\n")


def test_codes_match_rejects_prefix_and_other_code() -> None:
    code = generate_confirmation_code()
    assert not codes_match(code, code[:-1])
    assert not codes_match(code, code + "0")
    assert not codes_match(code, generate_confirmation_code())
    assert not codes_match(code, "")


def test_normalize_submitted_code_handles_none() -> None:
    assert normalize_submitted_code(None) == ""
    assert normalize_submitted_code(" AbC ") == "abc"
