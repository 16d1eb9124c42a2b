"""Authentication: request context, session tokens and API keys."""
