import pytest

from bank.payment_service.app.instruments import Card, InvalidCardNumber


def test_account_number_is_the_two_digit_prefix() -> None:
    card = Card.parse("071234567890123")
    assert card.number == "071234567890123"
    assert card.account_number == "07"


@pytest.mark.parametrize(
    "card_number",
    [
        "",
        "12345678901234",
        "1234567890123456",
        "1234567890123a5",
        "123456789012345\n",
        " 123456789012345",
        "١٢٣٤٥٦٧٨٩٠١٢٣٤٥",
    ],
)
def test_malformed_numbers_are_rejected(card_number: str) -> None:
    with pytest.raises(InvalidCardNumber):
        Card.parse(card_number)
