"""Request-level protection (rate limiting)."""
