"""Configuration for the match sync module."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / '.env')


class Config:
    """Configuration settings for match sync."""

    def __init__(self):
        # Record store (Airtable)
        self.AIRTABLE_API_KEY = os.getenv('AIRTABLE_API_KEY', '')
        self.AIRTABLE_BASE_ID = os.getenv('AIRTABLE_BASE_ID', '')
        self.AIRTABLE_API_URL = os.getenv('AIRTABLE_API_URL', 'https://api.airtable.com/v0')

        # CRM (GoHighLevel); optional, sync degrades to a no-op without it
        self.GHL_API_KEY = os.getenv('GHL_API_KEY', '')
        self.GHL_LOCATION_ID = os.getenv('GHL_LOCATION_ID', '')
        self.GHL_API_URL = os.getenv('GHL_API_URL', 'https://services.leadconnectorhq.com')
        self.GHL_API_VERSION = os.getenv('GHL_API_VERSION', '2021-07-28')
        self.GHL_PROPERTY_OBJECT_KEY = os.getenv('GHL_PROPERTY_OBJECT_KEY', 'custom_objects.properties')
        self.GHL_OPPORTUNITY_FIELD = os.getenv(
            'GHL_OPPORTUNITY_FIELD', 'custom_objects.properties.opportunity_id'
        )

        # Stage -> association id mapping file (YAML)
        self.STAGE_ASSOCIATIONS_FILE = os.getenv('MATCH_SYNC_STAGE_ASSOCIATIONS', '')

        # Resilience
        self.MAX_RETRIES = int(os.getenv('MATCH_SYNC_MAX_RETRIES', '3'))
        self.REQUEST_TIMEOUT = int(os.getenv('MATCH_SYNC_REQUEST_TIMEOUT', '30'))
        self.FANOUT_BATCH_SIZE = 3
        self.FANOUT_PAUSE_SECONDS = 0.15
        self.DELETE_BATCH_SIZE = 10

        # Caching (seconds)
        self.AGGREGATE_CACHE_TTL = int(os.getenv('MATCH_SYNC_AGGREGATE_TTL', '300'))
        self.ASSOCIATION_CACHE_TTL = int(os.getenv('MATCH_SYNC_ASSOCIATION_TTL', '3600'))
        cache_dir = os.getenv('MATCH_SYNC_CACHE_DIR', '')
        self.CACHE_DIR: Optional[Path] = Path(cache_dir) if cache_dir else None

        # Matching
        self.DEFAULT_MIN_SCORE = float(os.getenv('MATCH_SYNC_MIN_SCORE', '30'))
        self.DEFAULT_PAGE_SIZE = int(os.getenv('MATCH_SYNC_PAGE_SIZE', '50'))

        # Audit database
        self.DB_PATH = Path(os.getenv(
            'MATCH_SYNC_DB_PATH', str(PROJECT_ROOT / 'data' / 'match_sync.db')
        ))

        # Logging
        self.LOG_LEVEL = os.getenv('MATCH_SYNC_LOG_LEVEL', 'INFO')
        self.LOG_FILE = os.getenv('MATCH_SYNC_LOG_FILE', '')
        self.LOG_MAX_SIZE_MB = int(os.getenv('MATCH_SYNC_LOG_MAX_SIZE_MB', '10'))
        self.LOG_BACKUP_COUNT = int(os.getenv('MATCH_SYNC_LOG_BACKUP_COUNT', '5'))

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.AIRTABLE_API_KEY:
            errors.append('AIRTABLE_API_KEY not set')

        if not self.AIRTABLE_BASE_ID:
            errors.append('AIRTABLE_BASE_ID not set')

        if bool(self.GHL_API_KEY) != bool(self.GHL_LOCATION_ID):
            errors.append('GHL_API_KEY and GHL_LOCATION_ID must be set together')

        return errors

    def crm_configured(self) -> bool:
        """Check if CRM sync is enabled."""
        return bool(self.GHL_API_KEY and self.GHL_LOCATION_ID)


# Module-level singleton
config = Config()
