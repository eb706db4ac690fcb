"""Cache, request context, settings record and process configuration."""
