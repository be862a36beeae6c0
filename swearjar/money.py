"""
Integer-cent money helpers.

Every monetary amount in the service is an integer number of cents
(25.00 = 2500). Integers have no representation error, so balances, totals
and averages stay exact no matter how many transactions are applied.

The direction of a transaction is carried by its type, never by the sign of
the stored amount; `signed_delta` is the single place that maps a type to
its effect on a jar balance.
"""

from decimal import Decimal

from swearjar.models.transaction import TransactionType

SUPPORTED_CURRENCIES = ("USD", "CAD", "EUR", "GBP")

MINIMUM_AMOUNT_CENTS = 1

# Effect of a completed transaction on its jar's balance
_BALANCE_SIGN = {
    TransactionType.DEPOSIT: 1,
    TransactionType.PENALTY: 1,
    TransactionType.WITHDRAWAL: -1,
    TransactionType.REFUND: -1,
}

_CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "EUR": "€", "GBP": "£"}


def signed_delta(txn_type: str, amount_cents: int) -> int:
    """
    Return the signed balance change a completed transaction causes.

    Raises:
        ValueError: For types that never change a jar balance directly (transfer).
    """
    try:
        sign = _BALANCE_SIGN[TransactionType(txn_type)]
    except KeyError:
        raise ValueError(f"Transaction type {txn_type!r} has no jar balance effect")
    return sign * amount_cents


def average_cents(total_cents: int, count: int) -> int:
    """Integer average rounded half-up; 0 when there is nothing to average."""
    if count <= 0:
        return 0
    return (2 * total_cents + count) // (2 * count)


def format_cents(amount_cents: int, currency: str) -> str:
    """Render cents for display, e.g. format_cents(2550, "USD") -> "$25.50"."""
    amount = (Decimal(amount_cents) / 100).quantize(Decimal("0.01"))
    symbol = _CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    if amount < 0:
        return f"-{symbol}{-amount:,}"
    return f"{symbol}{amount:,}"
