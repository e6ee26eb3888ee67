"""Model providers."""

from mcpgate.providers.google_api import GoogleProvider
from mcpgate.providers.google_schema_normalizer import GoogleSchemaNormalizer

__all__ = ["GoogleProvider", "GoogleSchemaNormalizer"]
