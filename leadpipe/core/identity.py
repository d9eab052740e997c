"""National-ID (CPF) and name keys used for identity matching."""

import re

CPF_LENGTH = 11
MIN_NAME_KEY_LENGTH = 3


def normalize_cpf(cpf: str | int | None) -> str:
    """Normalize a CPF to an 11-digit key.

    Strips formatting and restores leading zeros lost by numeric storage:
        123.456.789-01 → 12345678901
        1234567890     → 01234567890

    Values longer than a CPF are returned as bare digits. Returns an empty
    string when there are no digits.
    """
    if cpf is None:
        return ""
    digits = re.sub(r"\D", "", str(cpf))
    if not digits:
        return ""
    return digits.zfill(CPF_LENGTH)


def is_cpf_key(key: str) -> bool:
    """Check that a normalized key has the exact CPF length."""
    return len(key) == CPF_LENGTH


def normalize_name(name: str | None) -> str:
    """Lower-cased, whitespace-collapsed name key, or empty if too short to match on."""
    if not name:
        return ""
    key = " ".join(str(name).split()).lower()
    if len(key) < MIN_NAME_KEY_LENGTH:
        return ""
    return key


def mask_cpf(cpf: str | None) -> str:
    """Mask a CPF for log output."""
    if not cpf:
        return ""
    return f"{cpf[:3]}...{cpf[-2:]}"
