"""
Central configuration for the accounts-payable ledger.

All paths, tax settings and payment-term defaults are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. config/ledger_settings.json  (admin-editable, persisted)
  2. Environment variables
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_SUPPLIERS_CSV = PROJECT_ROOT / "data" / "suppliers.csv"
DEFAULT_OUTPUT_DIR    = PROJECT_ROOT / "output"
DEFAULT_DB_PATH       = DEFAULT_OUTPUT_DIR / "ledger.db"
DEFAULT_BACKUP_DIR    = PROJECT_ROOT / "backups"

PRICING_EXCLUSIVE = "exclusive"
PRICING_INCLUSIVE = "inclusive"


@dataclass
class Config:
    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("LEDGER_DB_PATH", str(DEFAULT_DB_PATH)))
    )
    backup_dir: Path = field(
        default_factory=lambda: Path(os.getenv("BACKUP_DIR", str(DEFAULT_BACKUP_DIR)))
    )

    # --- Supplier directory ---
    suppliers_csv: Path = field(
        default_factory=lambda: Path(os.getenv("SUPPLIERS_CSV", str(DEFAULT_SUPPLIERS_CSV)))
    )
    # Used when a PO's supplier has since left the directory at receipt time.
    default_credit_days: int = 30

    # --- Tax ---
    vat_rate: float = field(
        default_factory=lambda: float(os.getenv("VAT_RATE", "16"))
    )
    # vat_rate is a percentage, e.g. 16 for 16% VAT.
    vat_pricing_type: str = field(
        default_factory=lambda: os.getenv("VAT_PRICING_TYPE", PRICING_EXCLUSIVE).lower()
    )
    # exclusive → PO unit costs are net, VAT is added on receipt
    # inclusive → PO unit costs already include VAT, which is backed out

    # --- Display ---
    currency_label: str = field(
        default_factory=lambda: os.getenv("CURRENCY", "Ksh")
    )

    # --- HTTP API ---
    api_host: str = field(default_factory=lambda: os.getenv("API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: int(os.getenv("API_PORT", "8000")))

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from ledger_settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "ledger_settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "vat_rate":            float,
            "vat_pricing_type":    str,
            "default_credit_days": int,
            "currency_label":      str,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load ledger_settings.json: %s", exc)
