"""VeriCred configuration settings using Pydantic.

Loads settings from:
1. config/config.yaml (optional)
2. Environment variables prefixed with ``VERICRED_`` (and ``.env``)
3. Default values
"""

from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vericred.utils import get_project_root

load_dotenv()


class VeriCredSettings(BaseSettings):
    """Central configuration for the verification subsystem."""

    model_config = SettingsConfigDict(
        env_prefix="VERICRED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # --- Storage ---
    data_dir: Path = Field(default_factory=lambda: get_project_root() / "data")
    corpus_db: Optional[Path] = None
    audit_db: Optional[Path] = None
    ledger_store: Optional[Path] = None

    # --- Networked ledger (local fallback when ledger_url is empty) ---
    ledger_url: str = ""
    ledger_api_key: str = ""
    ledger_contract: str = ""
    ledger_timeout: float = 10.0
    ledger_max_retries: int = 3
    ledger_retry_delay: float = 0.5

    # --- Extraction ---
    ocr_enabled: bool = False
    ocr_timeout: float = 15.0
    ocr_lang: str = "eng"
    tesseract_cmd: str = ""
    max_upload_bytes: int = 16 * 1024 * 1024

    # --- Fuzzy matching ---
    fuzzy_threshold: float = Field(default=0.80, ge=0.0, le=1.0)
    fuzzy_candidate_limit: int = Field(default=500, ge=1)
    fuzzy_institute_tokens: int = Field(default=3, ge=1)

    # --- Minting ---
    token_uri_template: str = ""
    mint_idempotent: bool = False

    # --- API ---
    api_key: str = ""
    demo_mode: bool = False
    cors_origins: str = "http://localhost:3000"

    # --- Logging ---
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def corpus_db_path(self) -> Path:
        return self.corpus_db or self.data_dir / "corpus.db"

    @property
    def audit_db_path(self) -> Path:
        return self.audit_db or self.data_dir / "audit.db"

    @property
    def ledger_store_path(self) -> Path:
        return self.ledger_store or self.data_dir / "local_ledger.db"

    @property
    def ledger_mode(self) -> str:
        return "remote" if self.ledger_url else "local"

    def token_uri_for(self, fingerprint: str) -> str:
        """Render the token URI for a minted fingerprint ('' when unset)."""
        if not self.token_uri_template:
            return ""
        return self.token_uri_template.format(fingerprint=fingerprint)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "VeriCredSettings":
        """Load settings from a YAML file, falling back to env/defaults."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            return cls()

        with open(yaml_path) as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)


# Global configuration instance
_config: Optional[VeriCredSettings] = None


def get_config() -> VeriCredSettings:
    """Get or create global configuration instance"""
    global _config
    if _config is None:
        _config = VeriCredSettings.from_yaml()
    return _config


def reload_config(yaml_path: Optional[str | Path] = None) -> VeriCredSettings:
    """Reload configuration from file"""
    global _config
    _config = VeriCredSettings.from_yaml(yaml_path) if yaml_path else VeriCredSettings.from_yaml()
    return _config
