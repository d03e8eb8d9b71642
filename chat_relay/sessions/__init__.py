"""Session storage, relay orchestration and HTTP API."""
