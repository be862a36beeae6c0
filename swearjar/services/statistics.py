"""
Statistics aggregator: derived running totals on each jar.

`apply_balance_change` is called by the LedgerStore, and only by it, at the
exact moment a jar balance changes, inside the same unit of work. Because the
statistics columns live on the jar row the store has just updated under the
jar lock, a transaction can neither be counted twice nor skipped: pending,
failed and cancelled transactions never reach this function, and a deferred
deposit is counted when (and only when) it completes.

`summarize` is the read-side counterpart: it recomputes per-type totals from
the completed transactions themselves, optionally within a date range, which
is useful both for reporting and for auditing the running totals.
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from swearjar.models.jar import Jar
from swearjar.models.transaction import Transaction, TransactionStatus, TransactionType
from swearjar.money import average_cents


def apply_balance_change(jar: Jar, txn_type: str, amount_cents: int, at: datetime) -> None:
    """
    Fold one balance-affecting transaction into the jar's statistics.

    Deposits and penalties count toward total deposits (penalties are also
    tracked on their own), withdrawals toward total withdrawals and refunds
    toward total refunds. The average deposit is total deposits divided by
    the number of balance-affecting transactions, rounded half-up to a cent.
    """
    txn_type = TransactionType(txn_type)

    jar.transaction_count += 1

    if txn_type in (TransactionType.DEPOSIT, TransactionType.PENALTY):
        jar.total_deposits_cents += amount_cents
        if txn_type == TransactionType.PENALTY:
            jar.total_penalties_cents += amount_cents
    elif txn_type == TransactionType.WITHDRAWAL:
        jar.total_withdrawals_cents += amount_cents
    elif txn_type == TransactionType.REFUND:
        jar.total_refunds_cents += amount_cents

    jar.average_deposit_cents = average_cents(jar.total_deposits_cents, jar.transaction_count)
    jar.last_activity_at = at


async def summarize(
    db: AsyncSession,
    jar_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Totals per transaction type over completed transactions of a jar.

    Args:
        db: Database session.
        jar_id: The jar to summarize.
        start: Optional inclusive lower bound on created_at.
        end: Optional inclusive upper bound on created_at.

    Returns:
        Dict with one "<type>_cents" total per transaction type and a "count".
    """
    query = (
        select(Transaction.type, func.coalesce(func.sum(Transaction.amount_cents), 0), func.count())
        .where(Transaction.jar_id == jar_id)
        .where(Transaction.status == TransactionStatus.COMPLETED.value)
        .group_by(Transaction.type)
    )
    if start is not None:
        query = query.where(Transaction.created_at >= start)
    if end is not None:
        query = query.where(Transaction.created_at <= end)

    result = await db.execute(query)

    totals = {f"{t.value}_cents": 0 for t in TransactionType}
    count = 0
    for txn_type, total, rows in result.all():
        totals[f"{txn_type}_cents"] = int(total)
        count += rows

    return {"jar_id": jar_id, **totals, "count": count}
