"""Core infrastructure: configuration, database, security."""
