from __future__ import annotations

import secrets

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_referral_code(length: int = 8) -> str:
    """Generates an uppercase referral code with low typo ambiguity."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def normalize_referral_code(raw_code: str | None) -> str | None:
    if raw_code is None:
        return None
    normalized = raw_code.strip().upper()
    return normalized or None
