"""HTTP API, configuration and logging for the editor automation service."""
