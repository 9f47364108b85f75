"""Password hashing, tokens, refresh sessions, lockout and rate limiting."""
