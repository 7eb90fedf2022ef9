"""Tests for dunning_notifier.config -- settings and script parameters.

Covers:
- Defaults when no config file is present
- YAML overlay of sections and parameters
- Environment variables taking precedence over config.yaml
- Lenient parameter parsing (no validation, malformed -> None)
"""

from pathlib import Path

import pytest

from dunning_notifier.config import (
    PARAM_AUTHOR,
    PARAM_CC,
    PARAM_DAYS_PAST_DUE,
    PARAM_REPLY_TO,
    DunningConfig,
    get_config,
    load_parameters,
    with_threshold,
)
from dunning_notifier.models import Configuration


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in (
        "DUNNING_EMAIL_DAYS",
        "DUNNING_EMAIL_AUTHOR",
        "DUNNING_EMAIL_REPLYTO",
        "DUNNING_EMAIL_CC",
        "DUNNING_EMAIL_SEARCH",
        "DUNNING_EMAIL_TEMPLATE",
        "SMTP_USERNAME",
        "SMTP_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)


def _write_yaml(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


# ============================================================================
# Application config
# ============================================================================

class TestDefaults:
    def test_company_defaults(self):
        cfg = DunningConfig()
        assert cfg.company.name == "Taco, Inc."
        assert cfg.company.department == "Accounts Receivable"

    def test_query_defaults(self):
        cfg = DunningConfig()
        assert cfg.query.subsidiary == "37"
        assert cfg.query.status == "CustInvc:A"

    def test_ledger_off_by_default(self):
        assert DunningConfig().ledger.enabled is False

    def test_smtp_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("SMTP_USERNAME", "mailer@taco.example")
        monkeypatch.setenv("SMTP_PASSWORD", "s3cret")
        cfg = DunningConfig()
        assert cfg.smtp.username == "mailer@taco.example"
        assert cfg.smtp.password == "s3cret"


class TestYamlOverlay:
    def test_sections_overlay(self, tmp_path):
        path = _write_yaml(tmp_path, (
            "company:\n"
            "  name: Burrito LLC\n"
            "query:\n"
            "  subsidiary: '12'\n"
            "ledger:\n"
            "  enabled: true\n"
        ))
        cfg = get_config(path)
        assert cfg.company.name == "Burrito LLC"
        assert cfg.company.department == "Accounts Receivable"
        assert cfg.query.subsidiary == "12"
        assert cfg.ledger.enabled is True

    def test_unknown_keys_ignored(self, tmp_path):
        path = _write_yaml(tmp_path, "company:\n  mascot: llama\n")
        cfg = get_config(path)
        assert not hasattr(cfg.company, "mascot")

    def test_empty_file_gives_defaults(self, tmp_path):
        cfg = get_config(_write_yaml(tmp_path, ""))
        assert cfg.company.name == "Taco, Inc."

    def test_missing_explicit_path_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_config(tmp_path / "nope.yaml")

    def test_parameters_section(self, tmp_path):
        path = _write_yaml(tmp_path, (
            "parameters:\n"
            f"  {PARAM_DAYS_PAST_DUE}: 14\n"
            f"  {PARAM_REPLY_TO}: ar@taco.example\n"
        ))
        cfg = get_config(path)
        assert cfg.get_parameter(PARAM_DAYS_PAST_DUE) == 14
        assert cfg.get_parameter(PARAM_REPLY_TO) == "ar@taco.example"


# ============================================================================
# Script parameters
# ============================================================================

class TestLoadParameters:
    def test_all_four_parameters(self):
        cfg = DunningConfig(parameters={
            PARAM_DAYS_PAST_DUE: "30",
            PARAM_AUTHOR: "7",
            PARAM_REPLY_TO: " ar@taco.example ",
            PARAM_CC: "collections@taco.example",
        })
        params = load_parameters(cfg)
        assert params == Configuration(
            threshold_days=30,
            author_id=7,
            reply_to="ar@taco.example",
            cc_list="collections@taco.example",
        )

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("DUNNING_EMAIL_DAYS", "45")
        cfg = DunningConfig(parameters={PARAM_DAYS_PAST_DUE: 30})
        assert load_parameters(cfg).threshold_days == 45

    def test_empty_env_does_not_override(self, monkeypatch):
        monkeypatch.setenv("DUNNING_EMAIL_DAYS", "")
        cfg = DunningConfig(parameters={PARAM_DAYS_PAST_DUE: 30})
        assert load_parameters(cfg).threshold_days == 30

    @pytest.mark.parametrize("raw,expected", [
        (30, 30),
        ("30", 30),
        ("30.0", 30),
        (None, None),
        ("thirty", None),
        ("", None),
        (True, None),
    ])
    def test_threshold_parsing(self, raw, expected):
        cfg = DunningConfig(parameters={PARAM_DAYS_PAST_DUE: raw})
        assert load_parameters(cfg).threshold_days == expected

    def test_missing_parameters_not_rejected(self):
        params = load_parameters(DunningConfig())
        assert params.threshold_days is None
        assert params.author_id is None
        assert params.reply_to == ""
        assert params.cc_list == ""

    def test_configuration_is_immutable(self):
        params = load_parameters(DunningConfig(parameters={PARAM_DAYS_PAST_DUE: 7}))
        with pytest.raises(AttributeError):
            params.threshold_days = 8

    def test_with_threshold_returns_copy(self):
        params = Configuration(threshold_days=7, reply_to="ar@taco.example")
        other = with_threshold(params, 45)
        assert other.threshold_days == 45
        assert other.reply_to == "ar@taco.example"
        assert params.threshold_days == 7

    def test_cc_emails(self):
        assert Configuration(cc_list="cc@taco.example").cc_emails == ["cc@taco.example"]
        assert Configuration().cc_emails == []
