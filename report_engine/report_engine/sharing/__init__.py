"""Share link service."""

from report_engine.sharing.service import ShareLinkService

__all__ = ["ShareLinkService"]
