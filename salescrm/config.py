"""
Sales CRM Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).parent.parent

# Load .env file
env_path = _PROJECT_ROOT / '.env'
load_dotenv(env_path)

STORE_BACKENDS = ('postgres', 'memory')


class Config:
    """Application configuration."""

    # Record store backend: 'postgres' for real use, 'memory' for tests and demos
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'postgres').lower()
    if STORE_BACKEND not in STORE_BACKENDS:
        _logger.critical(f"STORE_BACKEND={STORE_BACKEND!r} is not one of {STORE_BACKENDS}")
        raise ValueError(f"STORE_BACKEND must be one of {STORE_BACKENDS}, got {STORE_BACKEND!r}")

    # Database: required by the postgres backend, set it in .env
    DATABASE_URL = os.getenv('DATABASE_URL')
    if STORE_BACKEND == 'postgres' and not DATABASE_URL:
        _logger.critical("DATABASE_URL is not set, cannot start. Copy .env.example to .env and configure it.")
        raise ValueError("DATABASE_URL environment variable is not set. Copy .env.example to .env and configure it.")

    # Session: whose notifications are polled
    CURRENT_USER_EMAIL = os.getenv('CURRENT_USER_EMAIL', '')

    # Notification polling
    NOTIFICATION_POLL_SECONDS = float(os.getenv('NOTIFICATION_POLL_SECONDS', '30'))
    NOTIFICATION_LIMIT = int(os.getenv('NOTIFICATION_LIMIT', '20'))

    # Contacts listing
    CONTACT_LIST_LIMIT = int(os.getenv('CONTACT_LIST_LIMIT', '500'))

    # Client-side preferences (column visibility)
    PREFERENCES_PATH = Path(os.getenv('PREFERENCES_PATH', str(_PROJECT_ROOT / 'data' / 'preferences.json')))

    # Display
    CURRENCY = os.getenv('CURRENCY', '€')


# Singleton instance
config = Config()
