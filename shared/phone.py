import re

import phonenumbers

DEFAULT_COUNTRY_CODE = "62"

_NON_DIGITS = re.compile(r"\D")


def canonical_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the canonical digits-only phone for a raw channel address.

    - "6281234567890@s.whatsapp.net", "6281234567890:12@c.us" -> "6281234567890"
    - "+62 812-3456-7890" -> "6281234567890"
    - "081234567890" (national trunk prefix) -> "6281234567890"
    - "81234567890" -> "6281234567890"
    - "006281234567890", "+62 (0)812-3456-7890" -> "6281234567890"

    Idempotent: a canonical value maps to itself.
    """
    s = (raw or "").strip()
    # channel suffix ("@c.us", "@s.whatsapp.net") and device part (":12")
    s = s.split("@", 1)[0].split(":", 1)[0]
    digits = _NON_DIGITS.sub("", s)
    if not digits:
        return ""

    # international call prefix: "0062..."
    if digits.startswith("00"):
        digits = digits[2:]

    if digits.startswith(country_code):
        # "+62 (0)812..." keeps the trunk 0 after the country code
        digits = digits[len(country_code):]

    digits = digits.lstrip("0")
    if not digits:
        return ""
    return f"{country_code}{digits}"


def to_chat_id(raw: str, suffix: str = "@c.us", country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Address a phone in the chat network's scheme: canonical digits + domain suffix."""
    digits = canonical_phone(raw, country_code)
    if not digits:
        raise ValueError(f"invalid recipient: {raw!r}")
    return f"{digits}{suffix}"


def is_valid_recipient(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> bool:
    """True if the raw value can be a real phone number once canonicalized."""
    digits = canonical_phone(raw, country_code)
    if not digits:
        return False
    try:
        parsed = phonenumbers.parse(f"+{digits}", None)
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_possible_number(parsed)
