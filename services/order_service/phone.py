import re

from shared.errors import ValidationError

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw, country_code: str = "254", subscriber_digits: int = 9, field: str = "phone") -> str:
    """
    Return the bare-digits international form of a mobile number.

    "0712345678", "712345678", "254712345678" and "+254712345678" all
    normalize to "254712345678".
    """
    cleaned = _NON_DIGITS.sub("", str(raw or ""))

    if cleaned.startswith("0"):
        cleaned = country_code + cleaned[1:]
    elif not cleaned.startswith(country_code):
        cleaned = country_code + cleaned

    expected = len(country_code) + subscriber_digits
    if len(cleaned) != expected:
        raise ValidationError(
            f"Invalid phone number '{raw}': expected {expected} digits, got {len(cleaned)}",
            field=field,
        )
    return cleaned
