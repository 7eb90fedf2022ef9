"""
Dunning Notifier -- Configuration Module

Two layers of configuration:

* ``DunningConfig`` -- application settings (company, query constants,
  SMTP, file paths, ledger).  Dataclass defaults overlaid by config.yaml.
* ``Configuration`` -- the four script parameters for one deployment
  (days past due, author, reply-to, CC).  Read through
  ``load_parameters()`` from the ``parameters:`` section of config.yaml,
  with environment variables taking precedence.

Usage:
    from dunning_notifier.config import get_config, load_parameters
    cfg = get_config()                          # loads config.yaml if present
    params = load_parameters(cfg)
    print(params.threshold_days)                # 30
    print(cfg.company.name)                     # Taco, Inc.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import Configuration

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # dunning_notifier/
PROJECT_ROOT = _THIS_DIR.parent                       # repository root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"


# ===================================================================
# 1. Script Parameters
# ===================================================================

PARAM_DAYS_PAST_DUE = "custscript_dunning_email_days"
PARAM_AUTHOR = "custscript_dunning_email_author"
PARAM_REPLY_TO = "custscript_dunning_email_replyto"
PARAM_CC = "custscript_dunning_email_cc"
PARAM_SAVED_SEARCH = "custscript_dunning_email_search"
PARAM_TEMPLATE = "custscript_dunning_email_template"

# Environment variables override the values in config.yaml.
PARAMETER_ENV_VARS: dict[str, str] = {
    PARAM_DAYS_PAST_DUE: "DUNNING_EMAIL_DAYS",
    PARAM_AUTHOR: "DUNNING_EMAIL_AUTHOR",
    PARAM_REPLY_TO: "DUNNING_EMAIL_REPLYTO",
    PARAM_CC: "DUNNING_EMAIL_CC",
    PARAM_SAVED_SEARCH: "DUNNING_EMAIL_SEARCH",
    PARAM_TEMPLATE: "DUNNING_EMAIL_TEMPLATE",
}


# ===================================================================
# 2. Company / Message Content
# ===================================================================

@dataclass
class CompanyInfo:
    """Identity used in the reminder subject and signature."""
    name: str = "Taco, Inc."
    department: str = "Accounts Receivable"
    subject_template: str = "{company} Invoice Due Reminder"


# ===================================================================
# 3. Query Constants
# ===================================================================

@dataclass
class QuerySettings:
    """Fixed filter values for the default invoice query."""
    record_type: str = "transaction"
    subsidiary: str = "37"
    status: str = "CustInvc:A"          # Invoice : Open


# ===================================================================
# 4. SMTP Settings
# ===================================================================

@dataclass
class SMTPSettings:
    """SMTP relay used by the live mail gateway."""
    host: str = "smtp.gmail.com"
    port: int = 587
    use_tls: bool = True
    username: str = ""        # set via env var SMTP_USERNAME
    password: str = ""        # set via env var SMTP_PASSWORD
    from_address: str = ""    # used when the author has no address on file
    timeout: float = 30.0

    def __post_init__(self):
        self.username = self.username or os.environ.get("SMTP_USERNAME", "")
        self.password = self.password or os.environ.get("SMTP_PASSWORD", "")


# ===================================================================
# 5. Data File Paths
# ===================================================================

@dataclass
class DataFilePaths:
    """Paths to the record store workbook and dry-run outbox."""
    workbook: str = "data/transactions.xlsx"
    outbox_dir: str = "output/outbox"

    def resolve(self, rel_path: str) -> Path:
        p = Path(rel_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# 6. Notification Ledger
# ===================================================================

@dataclass
class LedgerConfig:
    """Optional record of already-sent reminders.

    Off by default: a second run on the same day sends the same
    reminders again.
    """
    enabled: bool = False
    db_path: str = "output/dunning_ledger.db"


# ===================================================================
# 7. Output
# ===================================================================

@dataclass
class OutputConfig:
    """Log file location.  Empty string logs to the console only."""
    log_file: str = ""


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class DunningConfig:
    """Top-level configuration container for the Dunning Notifier."""
    parameters: dict[str, Any] = field(default_factory=dict)
    company: CompanyInfo = field(default_factory=CompanyInfo)
    query: QuerySettings = field(default_factory=QuerySettings)
    smtp: SMTPSettings = field(default_factory=SMTPSettings)
    data_files: DataFilePaths = field(default_factory=DataFilePaths)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def get_parameter(self, name: str) -> Any:
        """Read one script parameter: environment first, then config.yaml."""
        env_name = PARAMETER_ENV_VARS.get(name)
        if env_name:
            env_val = os.environ.get(env_name)
            if env_val not in (None, ""):
                return env_val
        return self.parameters.get(name)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: DunningConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a DunningConfig instance."""

    # --- script parameters ---
    if isinstance(data.get("parameters"), dict):
        cfg.parameters.update(data["parameters"])

    # --- simple sub-configs ---
    _section_map = {
        "company": cfg.company,
        "query": cfg.query,
        "smtp": cfg.smtp,
        "data_files": cfg.data_files,
        "ledger": cfg.ledger,
        "output": cfg.output,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)


def get_config(yaml_path: Optional[str | Path] = None) -> DunningConfig:
    """Build a DunningConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated DunningConfig instance.

    Raises:
        FileNotFoundError: an explicit ``yaml_path`` does not exist.
    """
    cfg = DunningConfig()

    if yaml_path is not None and not Path(yaml_path).exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    path = Path(yaml_path) if yaml_path else DEFAULT_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        _apply_yaml_to_config(cfg, data)

    return cfg


# ===================================================================
# Script parameter loading
# ===================================================================

def _parse_int(val) -> int | None:
    """Parse an integer parameter, returning None on failure."""
    if val is None or isinstance(val, bool):
        return None
    try:
        return int(float(val))
    except (ValueError, TypeError):
        return None


def _clean_str(val) -> str:
    if val is None:
        return ""
    return str(val).strip()


def load_parameters(cfg: Optional[DunningConfig] = None) -> Configuration:
    """Read the script parameters into an immutable Configuration.

    Absent or malformed values are not reported here.  An unparseable
    day count becomes ``None`` (the query then matches nothing) and a
    missing reply-to or author fails later, at send time.
    """
    if cfg is None:
        cfg = get_config()
    return Configuration(
        threshold_days=_parse_int(cfg.get_parameter(PARAM_DAYS_PAST_DUE)),
        author_id=_parse_int(cfg.get_parameter(PARAM_AUTHOR)),
        reply_to=_clean_str(cfg.get_parameter(PARAM_REPLY_TO)),
        cc_list=_clean_str(cfg.get_parameter(PARAM_CC)),
        search_file=_clean_str(cfg.get_parameter(PARAM_SAVED_SEARCH)),
        template_file=_clean_str(cfg.get_parameter(PARAM_TEMPLATE)),
    )


def with_threshold(params: Configuration, threshold_days: int) -> Configuration:
    """Return a copy of ``params`` targeting a different day count."""
    return replace(params, threshold_days=threshold_days)
