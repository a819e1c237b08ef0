"""
Configuration management (SSOT).

This module defines ALL configuration for the reconciliation engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- demo_mode is an explicit value threaded into every entry point,
  never a process-wide flag
- auto_match_threshold >= candidate_threshold
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .schemas.synthetic import DEFAULT_SYNTHETIC_PATTERNS


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class IngestionConfig:
    """Bank statement ingestion settings."""

    # Accept rows matching the synthetic lexicon (demo/test environments only)
    demo_mode: bool = False
    # Case-insensitive substrings that mark a row as synthetic
    synthetic_patterns: tuple[str, ...] = DEFAULT_SYNTHETIC_PATTERNS
    # Actor recorded on import batches when the caller gives none
    default_actor: str = "system"


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Minimum confidence to auto-link (only when a single candidate clears it)
    auto_match_threshold: float = 0.85
    # Candidates must score strictly above this to be listed
    candidate_threshold: float = 0.5
    # Reject manual links whose Movement does not exist
    strict_manual_links: bool = False


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        recon = self.reconciliation
        for name in ("auto_match_threshold", "candidate_threshold"):
            value = getattr(recon, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"reconciliation.{name} must be between 0 and 1")

        if recon.auto_match_threshold < recon.candidate_threshold:
            errors.append("auto_match_threshold must be >= candidate_threshold")

        if not self.ingestion.synthetic_patterns:
            errors.append("ingestion.synthetic_patterns must not be empty")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - BANK_RECON_DEMO_MODE (true/false)
    - BANK_RECON_STATE_DB
    - BANK_RECON_AUTO_MATCH_THRESHOLD

    Raises:
        ConfigValidationError: If the resulting configuration is invalid
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Ingestion config
    ingestion_data = data.get("ingestion", {})
    patterns = ingestion_data.get("synthetic_patterns") or DEFAULT_SYNTHETIC_PATTERNS
    ingestion = IngestionConfig(
        demo_mode=_env_bool("BANK_RECON_DEMO_MODE", ingestion_data.get("demo_mode", False)),
        synthetic_patterns=tuple(str(p).lower() for p in patterns),
        default_actor=ingestion_data.get("default_actor", "system"),
    )

    # Reconciliation config
    recon_data = data.get("reconciliation", {})
    auto_threshold = recon_data.get("auto_match_threshold", 0.85)
    auto_threshold_env = os.environ.get("BANK_RECON_AUTO_MATCH_THRESHOLD", "")
    if auto_threshold_env:
        try:
            auto_threshold = float(auto_threshold_env)
        except ValueError:
            raise ConfigValidationError(
                f"BANK_RECON_AUTO_MATCH_THRESHOLD is not a number: {auto_threshold_env!r}"
            )

    reconciliation = ReconciliationConfig(
        auto_match_threshold=float(auto_threshold),
        candidate_threshold=float(recon_data.get("candidate_threshold", 0.5)),
        strict_manual_links=recon_data.get("strict_manual_links", False),
    )

    # State DB
    state_db = os.environ.get("BANK_RECON_STATE_DB", data.get("state_db_path", "data/state.db"))

    config = Config(
        ingestion=ingestion,
        reconciliation=reconciliation,
        state_db_path=Path(state_db),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank statement reconciliation configuration

# Statement ingestion
ingestion:
  demo_mode: false                  # Accept demo/test rows (never in production)
  synthetic_patterns:               # Case-insensitive; rows containing these are rejected
    - demo
    - test
    - sample
    - ejemplo
    - ficticio
  default_actor: "system"

# Reconciliation
reconciliation:
  auto_match_threshold: 0.85        # Auto-link only a single candidate at or above this
  candidate_threshold: 0.5          # List candidates scoring strictly above this
  strict_manual_links: false        # Reject manual links to missing Movements

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
