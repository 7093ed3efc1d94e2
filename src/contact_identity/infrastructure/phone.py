"""Phone number normalization to E.164, so differently formatted numbers match."""

from collections.abc import Callable
from functools import partial

import phonenumbers


def normalize_phone(raw: str | int | None, default_region: str | None = None) -> str | None:
    """Parse and return the E.164 form of the number, or None if it is not a valid number.

    default_region applies when the input has no leading + ("202 555 1234"
    with "US"). A number that already carries a country code ignores it.
    """
    if raw is None or not str(raw).strip():
        return None
    raw = str(raw).strip()
    try:
        parsed = phonenumbers.parse(raw, default_region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def e164_normalizer(default_region: str | None = None) -> Callable[[str], str | None]:
    """Phone normalizer for IdentityService."""
    region = (default_region or "").strip().upper() or None
    return partial(normalize_phone, default_region=region)
