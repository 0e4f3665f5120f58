"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional


APP_NAME = "Unbind"


def get_default_storage_path(system: Optional[str] = None) -> str:
    """Per-platform data directory for entitlement state"""
    system = system or platform.system()
    home = Path.home()

    if system == "Darwin":
        base = home / "Library" / "Application Support"
    elif system == "Windows":
        base = Path(os.environ.get("APPDATA") or home / "AppData" / "Roaming")
    else:
        base = Path(os.environ.get("XDG_DATA_HOME") or home / ".local" / "share")
        return str(base / APP_NAME.lower())

    return str(base / APP_NAME)


class Settings(BaseSettings):
    """Engine settings"""

    # Local state
    STORAGE_DIR: str = get_default_storage_path()
    STATE_FILE: Optional[str] = None
    # Fernet key (urlsafe base64, 32 bytes). Plain JSON when unset.
    STATE_ENCRYPTION_KEY: Optional[str] = None

    # Plan limits
    # MUST match the paywall copy shown by the client
    TRIAL_DURATION_DAYS: int = 3
    FREE_DAILY_SESSIONS: int = 1
    TRIAL_DAILY_SESSIONS: int = 10
    PREMIUM_DAILY_SESSIONS: int = 10
    # Lifetime trial allowance, reported with usage stats
    TRIAL_MAX_TOTAL_SESSIONS: int = 30
    USAGE_RETENTION_DAYS: int = 60

    # Day boundary: IANA zone name, host local zone when unset
    TIMEZONE: Optional[str] = None

    # Billing ledger
    REVENUECAT_API_URL: str = "https://api.revenuecat.com/v1"
    REVENUECAT_API_KEY: Optional[str] = None
    REMOTE_TIMEOUT_SECONDS: float = 5.0
    ENTITLEMENT_ID: str = "premium"
    MONTHLY_PRODUCT_ID: str = "unbind_monthly_1999"
    ANNUAL_PRODUCT_ID: str = "unbind_yearly_9999"

    # Analytics
    ANALYTICS_URL: Optional[str] = None
    ANALYTICS_API_KEY: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after model creation"""
        if self.STATE_FILE is None:
            object.__setattr__(self, 'STATE_FILE', str(Path(self.STORAGE_DIR) / "entitlements.json"))

    def create_directories(self):
        """Create the storage directory"""
        Path(self.STORAGE_DIR).mkdir(parents=True, exist_ok=True)

    def get_storage_info(self) -> dict:
        """Get storage path information for support screens"""
        return {
            "storage_path": self.STORAGE_DIR,
            "state_file": self.STATE_FILE,
            "default_path": get_default_storage_path(),
            "is_default": self.STORAGE_DIR == get_default_storage_path(),
            "encrypted": bool(self.STATE_ENCRYPTION_KEY),
            "platform": platform.system(),
        }


# Global settings instance
settings = Settings()
