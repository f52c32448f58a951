"""Library catalog API."""
