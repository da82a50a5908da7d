"""
# Configuration Management Module

Configuration for the school tenancy core, built on **Pydantic Settings**.

## Loading Order

- **Tier 1 (Highest)**: Environment variables (e.g., `export MONGODB_URL="..."`)
- **Tier 2**: The file named by `SCHOOL_TENANCY_CONFIG_PATH`
- **Tier 3**: A `.env` file in the project root
- **Tier 4 (Lowest)**: Defaults declared on `Settings`

## Settings Groups

- **Database**: `MONGODB_*` connection and pool parameters shared by every tenant namespace.
- **Tenancy**: `TENANT_DATABASE_PREFIX` and the bookkeeping collection names.
- **Identifiers**: `IDENTIFIER_SEQUENCE_WIDTH`.
- **Deadlines**: default timeouts (seconds) applied when a caller supplies none.

## Usage

```python
from school_tenancy.config import settings

prefix = settings.TENANT_DATABASE_PREFIX  # "school_"
```
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "SCHOOL_TENANCY_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path.

    Checks, in order, the `SCHOOL_TENANCY_CONFIG_PATH` environment variable and a `.env`
    file in the project root. Returns `None` when neither exists, in which case settings
    come from the environment only.

    Returns:
        Optional[str]: The path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    **Configuration Groups:**
    *   **Database**: MongoDB connection details for the cluster hosting every school namespace.
    *   **Tenancy**: Namespace prefix and bookkeeping collection names.
    *   **Identifiers**: Zero-padding width of the sequence part.
    *   **Deadlines**: Default timeouts for connection resolution and storage operations.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_MAX_POOL_SIZE: int = 50
    MONGODB_MIN_POOL_SIZE: int = 5

    # Authentication (optional)
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Tenancy layout
    TENANT_DATABASE_PREFIX: str = "school_"
    ID_SEQUENCES_COLLECTION: str = "id_sequences"
    TENANT_META_COLLECTION: str = "tenant_meta"
    BOOTSTRAP_SEED_PLACEHOLDERS: bool = True

    # Identifier format
    IDENTIFIER_SEQUENCE_WIDTH: int = 4

    # Deadlines in seconds
    TENANT_RESOLVE_TIMEOUT: float = 15.0
    STORAGE_OPERATION_TIMEOUT: float = 10.0

    LOG_LEVEL: str = "INFO"

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        """
        Validates that the MongoDB URL is not empty.

        Raises:
            ValueError: If the URL is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .env and not empty!")
        return v

    @field_validator(
        "MONGODB_CONNECTION_TIMEOUT",
        "MONGODB_SERVER_SELECTION_TIMEOUT",
        "MONGODB_MAX_POOL_SIZE",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """Validates that numeric settings are positive integers."""
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator("TENANT_RESOLVE_TIMEOUT", "STORAGE_OPERATION_TIMEOUT", mode="before")
    @classmethod
    def validate_timeout_values(cls, v: Any, info: Any) -> float:
        """Validates that default deadlines are within 0-300 seconds (exclusive of 0)."""
        timeout = float(v)
        if timeout <= 0 or timeout > 300:
            raise ValueError(f"{info.field_name} must be between 0 and 300 seconds")
        return timeout

    @field_validator("IDENTIFIER_SEQUENCE_WIDTH", mode="before")
    @classmethod
    def validate_sequence_width(cls, v: Any) -> int:
        """Validates the zero-padding width of identifier sequences (1-9 digits)."""
        width = int(v)
        if width < 1 or width > 9:
            raise ValueError("IDENTIFIER_SEQUENCE_WIDTH must be between 1 and 9")
        return width

    @field_validator("TENANT_DATABASE_PREFIX")
    @classmethod
    def validate_database_prefix(cls, v: str) -> str:
        """Database names are lowercase; the prefix may only use lowercase letters, digits and underscores."""
        if not v or not v.replace("_", "").isalnum() or v != v.lower():
            raise ValueError("TENANT_DATABASE_PREFIX must be lowercase alphanumeric/underscore")
        return v

    @property
    def mongodb_connection_string(self) -> str:
        """
        Effective connection string with credentials injected when configured.

        Never log this value; use `redacted_mongodb_url`.
        """
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            password = self.MONGODB_PASSWORD.get_secret_value()
            scheme, _, rest = self.MONGODB_URL.partition("://")
            return f"{scheme}://{self.MONGODB_USERNAME}:{password}@{rest}"
        return self.MONGODB_URL

    @property
    def redacted_mongodb_url(self) -> str:
        """`MONGODB_URL` with any embedded credentials masked, for log output."""
        scheme, sep, rest = self.MONGODB_URL.partition("://")
        if not sep or "@" not in rest:
            return self.MONGODB_URL
        return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"


# Global settings instance
settings: Settings = Settings()
