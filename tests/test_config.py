"""Tests for mailroom.config -- dataclass defaults and YAML overlay."""

from pathlib import Path

from mailroom.config import BUSINESS_TIMEZONE, MailroomConfig, StorageConfig, get_config


# ============================================================================
# Defaults
# ============================================================================

class TestDefaults:
    def test_fee_defaults(self):
        cfg = MailroomConfig()
        assert cfg.fees.daily_rate == 2.00
        assert cfg.fees.grace_period_days == 1
        assert cfg.fees.fee_item_types == ["Package"]
        assert "venmo" in cfg.fees.payment_methods
        assert cfg.fees.min_waive_reason_length == 5

    def test_follow_up_defaults(self):
        cfg = MailroomConfig()
        assert cfg.follow_up.notify_interval_days == 3
        assert cfg.follow_up.overdue_days == 7
        assert cfg.follow_up.abandonment_days == 30

    def test_timezone_fixed(self):
        assert MailroomConfig().schedule.timezone == "America/New_York" == BUSINESS_TIMEZONE

    def test_missing_yaml_gives_defaults(self, tmp_path):
        cfg = get_config(tmp_path / "nope.yaml")
        assert cfg.fees.daily_rate == 2.00


# ============================================================================
# YAML Overlay
# ============================================================================

class TestYamlOverlay:
    def test_overrides_known_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "fees:\n"
            "  daily_rate: 3.0\n"
            "  fee_item_types: [Package, Large Package]\n"
            "follow_up:\n"
            "  notify_interval_days: 5\n"
            "  not_a_setting: 1\n"
            "unknown_section:\n"
            "  foo: bar\n",
            encoding="utf-8",
        )
        cfg = get_config(path)
        assert cfg.fees.daily_rate == 3.0
        assert cfg.fees.fee_item_types == ["Package", "Large Package"]
        assert cfg.fees.grace_period_days == 1
        assert cfg.follow_up.notify_interval_days == 5
        assert not hasattr(cfg.follow_up, "not_a_setting")

    def test_timezone_cannot_be_overridden(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("schedule:\n  timezone: Europe/London\n  run_time: '03:30'\n", encoding="utf-8")
        cfg = get_config(path)
        assert cfg.schedule.timezone == BUSINESS_TIMEZONE
        assert cfg.schedule.run_time == "03:30"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert get_config(path).fees.daily_rate == 2.00


# ============================================================================
# Storage / Output
# ============================================================================

class TestStorageConfig:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAILROOM_DB_PATH", str(tmp_path / "env.db"))
        assert StorageConfig().resolved_path == tmp_path / "env.db"

    def test_env_wins_over_yaml(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAILROOM_DB_PATH", str(tmp_path / "env.db"))
        monkeypatch.setenv("SMTP_USERNAME", "env-user")
        path = tmp_path / "config.yaml"
        path.write_text(
            "storage:\n  db_path: file.db\nsmtp:\n  username: file-user\n  password: file-pw\n",
            encoding="utf-8",
        )
        monkeypatch.delenv("SMTP_PASSWORD", raising=False)
        cfg = get_config(path)
        assert cfg.storage.resolved_path == tmp_path / "env.db"
        assert cfg.smtp.username == "env-user"
        assert cfg.smtp.password == "file-pw"

    def test_yaml_used_without_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MAILROOM_DB_PATH", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("storage:\n  db_path: file.db\n", encoding="utf-8")
        assert get_config(path).storage.db_path == "file.db"

    def test_relative_path_under_project_root(self, monkeypatch):
        monkeypatch.delenv("MAILROOM_DB_PATH", raising=False)
        path = StorageConfig(db_path="data/x.db").resolved_path
        assert path.is_absolute()
        assert path.parts[-2:] == ("data", "x.db")

    def test_output_resolve_absolute(self, tmp_path):
        cfg = MailroomConfig()
        assert cfg.output.resolve(str(tmp_path)) == Path(tmp_path)
