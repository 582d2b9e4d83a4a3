"""Virtual card numbers presented by payers."""

from __future__ import annotations

import re
from dataclasses import dataclass

CARD_NUMBER_LENGTH = 15
ACCOUNT_PREFIX_LENGTH = 2

_CARD_NUMBER_PATTERN = re.compile(rf"[0-9]{{{CARD_NUMBER_LENGTH}}}")


class InvalidCardNumber(ValueError):
    """Raised when a card number is not exactly fifteen ASCII digits."""


@dataclass(frozen=True, slots=True)
class Card:
    """A single-use virtual card.

    A fresh card number is issued for every purchase, and the account it
    draws from is encoded in its first two digits.
    """

    number: str

    @classmethod
    def parse(cls, card_number: str) -> Card:
        if _CARD_NUMBER_PATTERN.fullmatch(card_number) is None:
            msg = f"card number must be exactly {CARD_NUMBER_LENGTH} digits"
            raise InvalidCardNumber(msg)
        return cls(card_number)

    @property
    def account_number(self) -> str:
        return self.number[:ACCOUNT_PREFIX_LENGTH]
