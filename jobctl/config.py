DEFAULT_CONFIG = {
    "max_attempts": "3",
    "stale_lock_seconds": "300",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())
