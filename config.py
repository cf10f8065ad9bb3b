"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from pydantic_settings import BaseSettings


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for HourFlow.

    Returns:
        - macOS: ~/Library/Application Support/HourFlow
        - Linux: ~/.local/share/hourflow
        - Windows: %APPDATA%/HourFlow
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / "HourFlow")
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / "HourFlow")
        return str(home / "AppData" / "Roaming" / "HourFlow")
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "hourflow")
        return str(home / ".local" / "share" / "hourflow")


class Settings(BaseSettings):
    """Application settings"""

    # Storage - subscription cache and first launch marker live here
    STORAGE_DIR: str = get_default_storage_path()
    SUBSCRIPTION_CACHE_FILE: str = "subscription_cache.enc"
    FIRST_LAUNCH_FILE: str = "first_launch.json"
    IDENTITY_FILE: str = "user_auth.json"

    # Remote billing authority
    SUBSCRIPTION_API_URL: str = "https://gramertech.com/api"
    SUBSCRIPTION_REQUEST_TIMEOUT: float = 10.0
    SUBSCRIPTION_RETRY_ATTEMPTS: int = 2  # connection errors only
    SUBSCRIPTION_RETRY_WAIT: float = 0.5

    # Re-check scheduling (seconds)
    RECHECK_INTERVAL: float = 6 * 60 * 60
    FOREGROUND_RECHECK_THRESHOLD: float = 5 * 60

    # Trial
    TRIAL_LENGTH_DAYS: int = 15

    # Cache encryption (PBKDF2 -> Fernet key)
    CACHE_SECRET: str = f"hourflow:{platform.node()}"
    CACHE_SALT: str = "hourflow-subscription-cache"
    CACHE_KDF_ITERATIONS: int = 100_000

    # Free tier limits
    FREE_MAX_CLIENTS: int = 3
    FREE_MAX_MATERIALS_PER_CLIENT: int = 5
    FREE_MAX_INVOICES_PER_MONTH: int = 5
    FREE_CAN_CUSTOMIZE_BRANDING: bool = False
    FREE_CAN_EXPORT_PDF: bool = False
    FREE_CAN_EMAIL_INVOICES: bool = False
    FREE_CAN_SMS_INVOICES: bool = False
    FREE_CAN_EXPORT_DATA: bool = False

    # Development mode: invariant violations raise instead of failing closed
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "HOURFLOW_"
        case_sensitive = True

    @property
    def storage_path(self) -> Path:
        return Path(self.STORAGE_DIR)

    @property
    def subscription_cache_path(self) -> Path:
        return self.storage_path / self.SUBSCRIPTION_CACHE_FILE

    @property
    def first_launch_path(self) -> Path:
        return self.storage_path / self.FIRST_LAUNCH_FILE

    @property
    def identity_path(self) -> Path:
        return self.storage_path / self.IDENTITY_FILE

    def create_directories(self):
        """Create necessary directories"""
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def get_storage_info(self) -> dict:
        """Get storage path information for diagnostics"""
        return {
            "storage_path": self.STORAGE_DIR,
            "default_path": get_default_storage_path(),
            "is_default": self.STORAGE_DIR == get_default_storage_path(),
            "platform": platform.system(),
        }


# Global settings instance
settings = Settings()
