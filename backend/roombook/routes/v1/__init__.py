"""Versioned API routers, mounted under /api/v1 in main.py."""

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"
