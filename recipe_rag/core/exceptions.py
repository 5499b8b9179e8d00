class RecipeRAGError(Exception):
    """Base class for errors raised by the recipe RAG services."""


class ConfigurationError(RecipeRAGError):
    """A required setting is missing or invalid."""


class InvalidArgument(RecipeRAGError, ValueError):
    """Bad client input: empty question, non-positive result count, unknown mode."""


class SchemaError(RecipeRAGError):
    """Raw rows are missing a required column or carry unusable values."""


class EmbeddingFailure(RecipeRAGError):
    """The embedding provider failed or returned an unusable response."""


class GenerationFailure(RecipeRAGError):
    """The generation provider failed, timed out or returned an unusable response."""


class ModelMismatchError(RecipeRAGError):
    """Query-time embedding model differs from the model the store was built with."""


class CorruptStoreError(RecipeRAGError):
    """A persisted store is missing, unreadable or inconsistent."""


class ServiceNotReady(RecipeRAGError):
    """The query service has no loaded store to answer from."""
