"""
Mailroom Fee Engine -- Configuration Module

Centralizes all configuration for the mailroom storage-fee engine.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from mailroom.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.fees.daily_rate)                 # 2.0
    print(cfg.schedule.timezone)               # "America/New_York"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # mailroom/
PROJECT_ROOT = _THIS_DIR.parent                       # repo root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"

# The business timezone is fixed for every tenant.
BUSINESS_TIMEZONE = "America/New_York"


# ===================================================================
# 1. Storage Fees
# ===================================================================

@dataclass
class FeeSettings:
    """Pricing applied to newly created fee records.

    Rate and grace period are copied onto each fee at creation, so changing
    them here never re-prices fees that already exist.
    """
    daily_rate: float = 2.00                # $ per billable day
    grace_period_days: int = 1              # Day 0 + Day 1 free, fees start Day 2
    fee_item_types: list[str] = field(default_factory=lambda: ["Package"])
    payment_methods: list[str] = field(default_factory=lambda: [
        "cash", "card", "venmo", "zelle", "paypal", "check", "other",
    ])
    min_waive_reason_length: int = 5


# ===================================================================
# 2. Follow-Up / Triage
# ===================================================================

@dataclass
class FollowUpSettings:
    """Thresholds for the follow-up list and its urgency bands."""
    notify_interval_days: int = 3           # re-notify after this many business days
    overdue_days: int = 7                   # "overdue" band starts here
    abandonment_days: int = 30              # "abandonment" band starts here
    fee_band_score: int = 1000
    abandonment_band_score: int = 500
    overdue_band_score: int = 100


# ===================================================================
# 3. Schedule
# ===================================================================

@dataclass
class ScheduleConfig:
    """Daily fee recalculation run (triggered by an external timer)."""
    run_time: str = "02:00"          # 24h format, business-local time
    timezone: str = BUSINESS_TIMEZONE


# ===================================================================
# 4. Storage
# ===================================================================

@dataclass
class StorageConfig:
    """Location of the SQLite row store."""
    db_path: str = "mailroom.db"

    def __post_init__(self):
        self.db_path = os.environ.get("MAILROOM_DB_PATH", "") or self.db_path

    @property
    def resolved_path(self) -> Path:
        p = Path(self.db_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# 5. SMTP Settings
# ===================================================================

@dataclass
class SMTPSettings:
    """SMTP configuration for the bundled notification transport."""
    host: str = "smtp.gmail.com"
    port: int = 587
    use_tls: bool = True
    username: str = ""        # set via env var SMTP_USERNAME
    password: str = ""        # set via env var SMTP_PASSWORD

    def __post_init__(self):
        self.username = self.username or os.environ.get("SMTP_USERNAME", "")
        self.password = self.password or os.environ.get("SMTP_PASSWORD", "")


# ===================================================================
# 6. Sender Info
# ===================================================================

@dataclass
class SenderInfo:
    """Default FROM identity for customer notifications."""
    name: str = "Mailroom"
    email: str = ""
    business_name: str = "Mailroom"


# ===================================================================
# 7. Output Directory
# ===================================================================

@dataclass
class OutputConfig:
    """Where exported reports and logs are written."""
    report_dir: str = "output/reports"
    log_file: str = "output/mailroom.log"

    def resolve(self, rel_path: str) -> Path:
        p = Path(rel_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p

    def ensure_dirs(self) -> None:
        """Create output directories if they don't exist."""
        self.resolve(self.report_dir).mkdir(parents=True, exist_ok=True)
        self.resolve(self.log_file).parent.mkdir(parents=True, exist_ok=True)


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class MailroomConfig:
    """Top-level configuration container for the mailroom fee engine."""
    fees: FeeSettings = field(default_factory=FeeSettings)
    follow_up: FollowUpSettings = field(default_factory=FollowUpSettings)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    smtp: SMTPSettings = field(default_factory=SMTPSettings)
    sender: SenderInfo = field(default_factory=SenderInfo)
    output: OutputConfig = field(default_factory=OutputConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: MailroomConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a MailroomConfig instance."""
    _section_map = {
        "fees": cfg.fees,
        "follow_up": cfg.follow_up,
        "schedule": cfg.schedule,
        "storage": cfg.storage,
        "smtp": cfg.smtp,
        "sender": cfg.sender,
        "output": cfg.output,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)

    # The business timezone is not configurable.
    cfg.schedule.timezone = BUSINESS_TIMEZONE


def _apply_env_overrides(cfg: MailroomConfig) -> None:
    """Environment variables take precedence over config.yaml."""
    cfg.storage.db_path = os.environ.get("MAILROOM_DB_PATH", "") or cfg.storage.db_path
    cfg.smtp.username = os.environ.get("SMTP_USERNAME", "") or cfg.smtp.username
    cfg.smtp.password = os.environ.get("SMTP_PASSWORD", "") or cfg.smtp.password


def get_config(yaml_path: Optional[str | Path] = None) -> MailroomConfig:
    """Build a MailroomConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated MailroomConfig instance.
    """
    cfg = MailroomConfig()

    path = Path(yaml_path) if yaml_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)
        _apply_env_overrides(cfg)

    return cfg
