import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    Bring a Kenyan MSISDN to the local 0XXXXXXXXX form the aggregator expects.
    "+254 712 345 678" -> "0712345678", "712345678" -> "0712345678".
    """
    cleaned = _NON_DIGITS.sub("", str(phone or ""))
    if not cleaned:
        raise ValueError("phone number has no digits")
    if cleaned.startswith("254"):
        cleaned = "0" + cleaned[3:]
    elif not cleaned.startswith("0"):
        cleaned = "0" + cleaned
    return cleaned
