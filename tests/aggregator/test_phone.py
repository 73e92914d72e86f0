import pytest

from wordledger.utils.phone import normalize_phone


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0712345678", "0712345678"),
        ("254712345678", "0712345678"),
        ("+254 712 345 678", "0712345678"),
        ("712-345-678", "0712345678"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_phone_rejects_empty():
    with pytest.raises(ValueError):
        normalize_phone("---")
