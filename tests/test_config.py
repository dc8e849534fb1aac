"""
Tests for operator settings and the runtime configuration.
"""

import pytest
import yaml

from backup_recovery.config import DEFAULT_VOLATILE_FIELDS, BackupRecoveryConfig
from backup_recovery.exceptions import ConfigValidationError
from backup_recovery.models.entities import FailurePolicy
from config.settings import BackupSettings, load_settings, settings_to_yaml

CONFIG_YAML = """
include:
  accounts: [abc]
  tables:
ignore:
  tables: [abc/fed]
restore:
  tables:
    - name: abc/def
      remap: qqq/def
verify:
  table1: abc/def
  table2: qqq/def
  diffs: true
s3:
  bucket: foo-backup
  storage_class: GLACIER_IR
  secret_access_key: very-secret
azure:
  accounts:
    abc: c2VjcmV0
concurrency: 4
failure_policy: continue
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "backups.yaml"
    path.write_text(CONFIG_YAML)
    return path


class TestBackupRecoveryConfig:
    def test_defaults(self):
        config = BackupRecoveryConfig()
        assert config.concurrency == 10
        assert config.storage_class == "STANDARD_IA"
        assert config.failure_policy == FailurePolicy.FAIL_FAST
        assert config.volatile_fields == DEFAULT_VOLATILE_FIELDS

    @pytest.mark.parametrize("overrides", [
        {"concurrency": 0},
        {"concurrency": 2.5},
        {"insert_concurrency": 0},
        {"page_size": -1},
        {"compression_level": 23},
        {"credential_refresh_margin_seconds": -1},
        {"heartbeat_interval": 0},
        {"storage_class": ""},
    ])
    def test_rejects_invalid_values(self, overrides):
        with pytest.raises(ConfigValidationError):
            BackupRecoveryConfig(**overrides)

    def test_policy_from_string(self):
        assert BackupRecoveryConfig(failure_policy="continue").failure_policy == FailurePolicy.CONTINUE

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigValidationError, match="bogus"):
            BackupRecoveryConfig.from_dict({"bogus": 1})

    def test_to_dict_round_trip(self):
        config = BackupRecoveryConfig(concurrency=3, failure_policy=FailurePolicy.CONTINUE)
        assert BackupRecoveryConfig.from_dict(config.to_dict()).to_dict() == config.to_dict()


class TestSettings:
    def test_load_yaml(self, config_file):
        settings = load_settings(str(config_file))

        assert settings.include.accounts == ["abc"]
        assert settings.include.tables == []
        assert settings.filters.ignore.tables == ["abc/fed"]
        assert settings.restore.tables[0].remap == "qqq/def"
        assert settings.restore.containers == []
        assert settings.verify.diffs is True
        assert settings.s3.bucket == "foo-backup"
        assert settings.azure.accounts == {"abc": "c2VjcmV0"}
        assert settings.failure_policy == FailurePolicy.CONTINUE

    def test_runtime_config_from_settings(self, config_file):
        config = BackupRecoveryConfig.from_settings(load_settings(str(config_file)))
        assert config.concurrency == 4
        assert config.storage_class == "GLACIER_IR"
        assert config.failure_policy == FailurePolicy.CONTINUE

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BACKUPS_CONCURRENCY", "7")
        monkeypatch.setenv("BACKUPS_S3__BUCKET", "env-bucket")
        settings = load_settings()
        assert settings.concurrency == 7
        assert settings.s3.bucket == "env-bucket"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_yaml_dump_redacts_secrets(self, config_file):
        text = settings_to_yaml(load_settings(str(config_file)))
        dumped = yaml.safe_load(text)
        assert "very-secret" not in text
        assert "c2VjcmV0" not in text
        assert dumped["azure"]["accounts"] == {"abc": "***"}
        assert dumped["s3"]["secret_access_key"] == "***"
        assert dumped["s3"]["access_key_id"] is None
        assert dumped["failure_policy"] == "continue"

    def test_yaml_dump_round_trips(self, config_file):
        settings = load_settings(str(config_file))
        reloaded = BackupSettings(**yaml.safe_load(settings_to_yaml(settings, redact_secrets=False)))
        assert reloaded.model_dump() == settings.model_dump()
