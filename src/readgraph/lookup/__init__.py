"""Term lookup over the spoiler-safe graph and extractive text context."""

from .service import LookupResult, LookupService

__all__ = ["LookupResult", "LookupService"]
