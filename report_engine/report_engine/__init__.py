"""Core of the credit-metered report pipeline: catalog, ledger, orchestrator and share links."""

__version__ = "0.4.0"
