import pytest

from shared.errors import ValidationError
from services.order_service.phone import normalize_phone

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw",
    [
        "0712345678",
        "712345678",
        "254712345678",
        "+254712345678",
        "0712 345 678",
        "+254-712-345-678",
    ],
)
def test_local_and_international_forms_normalize_to_the_same_number(raw):
    assert normalize_phone(raw) == "254712345678"


def test_integer_input_is_accepted():
    assert normalize_phone(712345678) == "254712345678"


def test_too_short_number_is_rejected_with_its_digit_count():
    with pytest.raises(ValidationError) as exc:
        normalize_phone("12345")

    assert exc.value.status_code == 400
    assert "got 8" in exc.value.message
    assert exc.value.field == "phone"


def test_too_long_number_is_rejected():
    with pytest.raises(ValidationError) as exc:
        normalize_phone("07123456789")

    assert "expected 12 digits, got 13" in exc.value.message


@pytest.mark.parametrize("raw", ["", None, "not-a-number"])
def test_numbers_without_digits_are_rejected(raw):
    with pytest.raises(ValidationError):
        normalize_phone(raw)


def test_field_name_is_reported_back():
    with pytest.raises(ValidationError) as exc:
        normalize_phone("123", field="phoneNumber")

    assert exc.value.to_body()["field"] == "phoneNumber"


def test_other_country_prefix():
    assert normalize_phone("0772123456", country_code="256", subscriber_digits=9) == "256772123456"
