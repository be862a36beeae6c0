"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from swearjar.models directly
"""

from swearjar.models.jar import Jar  # noqa: F401
from swearjar.models.membership import Membership, MemberRole  # noqa: F401
from swearjar.models.bank_account import BankAccount, VerificationStatus  # noqa: F401
from swearjar.models.transaction import (  # noqa: F401
    SettlementStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
