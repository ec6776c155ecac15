"""Tests for run configuration."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from impact_controller.config import ImpactConfig, config_from_cli_args, parse_duration
from impact_controller.errors import ConfigError


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "seconds"),
        [
            ("90s", 90.0),
            ("60m", 3600.0),
            ("1h30m", 5400.0),
            ("1h0m5s", 3605.0),
            ("250ms", 0.25),
            ("1.5s", 1.5),
            ("45", 45.0),
            (12, 12.0),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    @pytest.mark.parametrize("text", ["", "abc", "10x", "m10", "5m garbage"])
    def test_invalid(self, text):
        with pytest.raises(ConfigError):
            parse_duration(text)


class TestImpactConfig:
    def test_defaults(self):
        config = ImpactConfig(package_under_test="github.com/stretchr/testify")
        assert config.package_list_file == "packages.txt"
        assert config.patch_file == "delta.patch"
        assert config.report_file == "report.txt"
        assert config.fetch_timeout_s == 3600.0
        assert config.concurrency == 8
        assert config.toolchain == "go"

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"package_under_test": ""}, "Must specify a package"),
            ({"concurrency": 0}, "Concurrency"),
            ({"fetch_timeout_s": 0}, "Fetch timeout"),
            ({"kill_grace_s": -1}, "Kill grace"),
            ({"log_format": "xml"}, "log format"),
        ],
    )
    def test_validate_rejects(self, overrides, message):
        values = {"package_under_test": "pkg"}
        values.update(overrides)
        with pytest.raises(ConfigError, match=message):
            ImpactConfig(**values).validate()

    def test_resolve_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = ImpactConfig(package_under_test="pkg", workdir="runs").resolve_paths()

        assert Path(config.package_list_file) == tmp_path / "packages.txt"
        assert Path(config.patch_file) == tmp_path / "delta.patch"
        assert Path(config.report_file) == tmp_path / "report.txt"
        assert Path(config.workdir) == tmp_path / "runs"


class TestConfigFromCliArgs:
    def test_maps_cli_names(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = SimpleNamespace(
            package="github.com/stretchr/testify",
            package_file="pkgs.txt",
            delta="mock.patch",
            timeout="2m",
            report="out.txt",
            concurrency=3,
            workdir=None,
            toolchain="go",
            profiles=None,
            verbose=True,
            log_format="json",
        )

        config = config_from_cli_args(args)

        assert config.package_under_test == "github.com/stretchr/testify"
        assert config.package_list_file == str(tmp_path / "pkgs.txt")
        assert config.patch_file == str(tmp_path / "mock.patch")
        assert config.fetch_timeout_s == 120.0
        assert config.report_file == str(tmp_path / "out.txt")
        assert config.concurrency == 3
        assert config.verbose is True
        assert config.log_format == "json"

    def test_package_is_required(self):
        with pytest.raises(ConfigError, match="Must specify a package"):
            config_from_cli_args(SimpleNamespace(package=None))

    def test_bad_timeout(self):
        with pytest.raises(ConfigError, match="Invalid duration"):
            config_from_cli_args(SimpleNamespace(package="p", timeout="soon"))
