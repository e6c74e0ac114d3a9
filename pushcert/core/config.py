"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables (prefix PUSHCERT_) or a .env
file, with sensible defaults. The crypto helpers themselves take explicit
arguments; settings only feed the `from_settings` constructors.
"""
from datetime import timedelta
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pushcert.core.crypto.armor import PEM_CIPHERS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PUSHCERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra fields from .env that aren't in the model
    )

    # ============================================================
    # PKCS7 Verification
    # ============================================================
    pkcs7_max_skew_seconds: float = Field(
        0,
        ge=0,
        description="Maximum clock skew tolerated between signer and server (seconds)"
    )

    # ============================================================
    # Certificate Issuance
    # ============================================================
    default_validity_days: int = Field(365, gt=0, description="Validity of self-signed certificates")

    # ============================================================
    # Key Encoding
    # ============================================================
    key_cipher: str = Field(
        "DES-EDE3-CBC",
        description="DEK-Info cipher for passphrase-protected keys (DES-EDE3-CBC for compatibility, AES-256-CBC recommended)"
    )

    # ============================================================
    # Logging Configuration
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    @field_validator("key_cipher")
    @classmethod
    def validate_key_cipher(cls, v: str) -> str:
        v = v.upper()
        if v not in PEM_CIPHERS:
            raise ValueError(f"key_cipher must be one of {', '.join(PEM_CIPHERS)}")
        return v

    @property
    def pkcs7_max_skew(self) -> timedelta:
        """Max skew as a timedelta."""
        return timedelta(seconds=self.pkcs7_max_skew_seconds)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
