"""Tests for config loader module."""

from pathlib import Path

import pytest

from repo_snapshot.config.loader import (
    ConfigError,
    find_config_file,
    generate_example_config,
    load_config,
)
from repo_snapshot.config.schema import DEFAULT_CACHE_DIRS


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_explicit_path_exists(self, config_file):
        """Test finding explicitly specified config file."""
        result = find_config_file(str(config_file))
        assert result == config_file

    def test_explicit_path_not_exists(self, tmp_path):
        """Test error when explicit path doesn't exist."""
        with pytest.raises(ConfigError, match="not found"):
            find_config_file(str(tmp_path / "nonexistent.toml"))

    def test_searched_paths(self, tmp_path, monkeypatch, sample_config_toml):
        """Test the first existing search path wins."""
        user_config = tmp_path / "user.toml"
        user_config.write_text(sample_config_toml)
        monkeypatch.setattr(
            "repo_snapshot.config.loader.CONFIG_PATHS",
            [tmp_path / "missing.toml", user_config],
        )

        assert find_config_file(None) == user_config

    def test_no_config_found(self, tmp_path, monkeypatch):
        """Test returning None when no search path exists."""
        monkeypatch.setattr(
            "repo_snapshot.config.loader.CONFIG_PATHS", [tmp_path / "missing.toml"]
        )
        assert find_config_file(None) is None


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_valid_config(self, config_file):
        """Test loading a valid configuration file."""
        config, warnings = load_config(config_file)

        assert warnings == []
        assert config.source.host == "git.example.com"
        assert config.source.port == 122
        assert config.source.is_remote
        assert config.source.rsync_path == "sudo -u git rsync"
        assert config.source.cache_dirs == ["__gitmon__"]

    def test_load_with_global_settings(self, config_file):
        """Test that global settings are loaded correctly."""
        config, _ = load_config(config_file)

        assert config.global_config.snapshot_root == "/var/backups/repo-snapshot"
        assert config.global_config.timestamp_format == "%Y%m%d-%H%M%S"
        assert config.global_config.compress is False
        assert config.global_config.transaction_log == "/var/log/repo-snapshot.jsonl"
        assert config.global_config.keep_incomplete is False

    def test_load_gc_and_audit_log(self, config_file):
        """Test compaction and log-segment sections."""
        config, _ = load_config(config_file)

        assert config.gc.suspend_command == "ghe-gc-disable"
        assert config.gc.resume_command == "ghe-gc-enable"
        assert config.gc.wait_timeout == 10.0
        assert config.gc.poll_interval == 2.0
        assert config.audit_log.enabled is True
        assert config.audit_log.fetch_command == "cat /var/log/audit/{segment}"
        assert config.audit_log.parallel_fetches == 2

    def test_load_minimal_config(self, minimal_config_file):
        """Test defaults fill every omitted setting."""
        config, warnings = load_config(minimal_config_file)

        assert warnings == []
        assert config.source.host == "git.example.com"
        assert config.source.port == 22
        assert config.source.cache_dirs == DEFAULT_CACHE_DIRS
        assert config.global_config.compress is True
        assert config.audit_log.enabled is True

    def test_load_nonexistent_file(self, tmp_path):
        """Test error when loading nonexistent file."""
        with pytest.raises(ConfigError, match="Cannot read config file"):
            load_config(tmp_path / "nonexistent.toml")

    def test_load_invalid_toml(self, tmp_config_dir):
        """Test error when loading invalid TOML."""
        bad_config = tmp_config_dir / "bad.toml"
        bad_config.write_text("this is not valid [ toml")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(bad_config)

    def test_section_must_be_table(self, tmp_config_dir):
        """Test error when a section is not a table."""
        bad_config = tmp_config_dir / "bad.toml"
        bad_config.write_text('source = "git.example.com"\n')

        with pytest.raises(ConfigError, match=r"\[source\] must be a table"):
            load_config(bad_config)

    def test_cache_dirs_must_be_list(self, tmp_config_dir):
        """Test error when cache_dirs is not a list of names."""
        bad_config = tmp_config_dir / "bad.toml"
        bad_config.write_text('[source]\ncache_dirs = "__gitmon__"\n')

        with pytest.raises(ConfigError, match="cache_dirs"):
            load_config(bad_config)

    def test_fetch_command_needs_placeholder(self, tmp_config_dir):
        """Test error when fetch_command cannot name a segment."""
        bad_config = tmp_config_dir / "bad.toml"
        bad_config.write_text('[audit_log]\nfetch_command = "cat /var/log/audit"\n')

        with pytest.raises(ConfigError, match="segment"):
            load_config(bad_config)


class TestValidation:
    """Tests for warnings produced while loading."""

    def test_relative_paths_warn(self, tmp_config_dir):
        """Test relative snapshot root and repository path produce warnings."""
        path = tmp_config_dir / "config.toml"
        path.write_text(
            '[global]\nsnapshot_root = "snapshots"\n'
            '[source]\nrepositories_path = "data"\n'
        )
        _, warnings = load_config(path)

        assert any("snapshot_root" in w for w in warnings)
        assert any("repositories_path" in w for w in warnings)

    def test_invalid_numbers_are_corrected(self, tmp_config_dir):
        """Test poll interval and parallelism are clamped with a warning."""
        path = tmp_config_dir / "config.toml"
        path.write_text(
            "[gc]\npoll_interval = 0\n[audit_log]\nparallel_fetches = 0\n"
        )
        config, warnings = load_config(path)

        assert config.gc.poll_interval == 1.0
        assert config.audit_log.parallel_fetches == 1
        assert len(warnings) == 2

    def test_non_special_cache_dir_warns(self, tmp_config_dir):
        """Test a cache dir that is not a __name__ store is flagged."""
        path = tmp_config_dir / "config.toml"
        path.write_text('[source]\ncache_dirs = ["cache", "cache"]\n')
        _, warnings = load_config(path)

        assert any("Duplicate" in w for w in warnings)
        assert any("'cache'" in w for w in warnings)


class TestGenerateExampleConfig:
    """Tests for the example configuration."""

    def test_example_is_loadable(self, tmp_path):
        """Test the generated example loads without warnings."""
        path = tmp_path / "example.toml"
        path.write_text(generate_example_config())

        config, warnings = load_config(path)

        assert warnings == []
        assert config.source.is_remote
        assert "{segment}" in config.audit_log.fetch_command
        assert Path(config.global_config.snapshot_root).is_absolute()
