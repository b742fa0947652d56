"""Page-bounded LLM extraction of entities, relationships, events and claims."""

from .errors import ExtractionFailed, ExtractionUnavailable, NotIndexed, SchemaInvalid

__all__ = ["ExtractionFailed", "ExtractionUnavailable", "NotIndexed", "SchemaInvalid"]
