"""Phone number utilities for consistent matching across data sources.

Every source stores phones differently: bare local numbers, numbers with the
country code, formatted numbers, and messaging ids such as
``5531999972368@s.whatsapp.net``. All of them are reduced to one canonical key:
country code (55) + area code (2 digits) + mobile digit 9 + 8 digits.
"""

import logging
import re

logger = logging.getLogger(__name__)

COUNTRY_CODE = "55"
MOBILE_DIGIT = "9"
CANONICAL_LENGTH = 13
MIN_SUBSCRIBER_DIGITS = 8


def normalize_phone(phone: str | None) -> str:
    """Normalize a phone number to its canonical digit-only key.

    Handles various input formats:
        31999972368                  → 5531999972368
        5531999972368                → 5531999972368
        +55 31 99997-2368            → 5531999972368
        5531999972368@s.whatsapp.net → 5531999972368
        3192267220                   → 5531992267220 (adds 55 and the 9)
        553192267220                 → 5531992267220 (adds the 9)

    Numbers without an area code (8 or 9 digits) are kept as-is since the
    area code can't be inferred. Returns an empty string when the input holds
    fewer than 8 digits. Never raises and is idempotent.
    """
    if not phone:
        return ""

    # Messaging-protocol suffix goes first so its digits never leak in
    digits = re.sub(r"@.*$", "", str(phone))
    digits = re.sub(r"\D", "", digits)
    digits = digits.lstrip("0")

    if len(digits) < MIN_SUBSCRIBER_DIGITS:
        if digits:
            logger.debug(f"[PHONE] Unparsable phone discarded: {len(digits)} digits")
        return ""

    if len(digits) in (8, 9):
        logger.debug(f"[PHONE] {len(digits)} digits, unknown area code: {digits[:4]}...")
        return digits

    if len(digits) == 10:
        # Area code + 8 digits, missing the mobile digit
        return f"{COUNTRY_CODE}{digits[:2]}{MOBILE_DIGIT}{digits[2:]}"
    if len(digits) == 11:
        # Area code + 9 digits, missing the country code
        return f"{COUNTRY_CODE}{digits}"
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return f"{COUNTRY_CODE}{digits[2:4]}{MOBILE_DIGIT}{digits[4:]}"
    if len(digits) == CANONICAL_LENGTH and digits.startswith(COUNTRY_CODE):
        return digits

    logger.debug(f"[PHONE] Unexpected length {len(digits)}, keeping digits as-is")
    return digits


def mask_phone(phone: str | None) -> str:
    """Mask a phone for log output."""
    if not phone:
        return ""
    return f"{phone[:6]}..."
