"""Credit ledger."""

from report_engine.ledger.ledger import CreditLedger

__all__ = ["CreditLedger"]
