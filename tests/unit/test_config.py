"""
Unit tests for JSON config loading and CLI override logic.

Coverage:
- Packaged defaults load and build a ScanConfig
- User files override only the keys they name
- Missing and malformed files raise
- CLI options take precedence over the file, unset options do not
"""

from __future__ import annotations

import json

import pytest

from assocscan.association import ScanConfig
from assocscan.cli import merge_cli_into_config, parse_args
from assocscan.config import load_config


@pytest.mark.unit
class TestLoadConfig:
    def test_packaged_defaults(self):
        cfg = load_config()
        assert cfg["variant_key"] == ["chromosome", "position"]
        assert cfg["genotype_column"] == "genotype"
        assert cfg["workers"] is None
        assert cfg["worker_retries"] == 0
        assert cfg["mac_threshold"] == 0
        assert cfg["info_threshold"] is None

    def test_defaults_build_scan_config(self):
        config = ScanConfig.from_dict(load_config())
        assert config == ScanConfig()

    def test_user_file_overrides_selected_keys(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text(json.dumps({"workers": 3, "mac_threshold": 5}))

        cfg = load_config(str(path))

        assert cfg["workers"] == 3
        assert cfg["mac_threshold"] == 5
        assert cfg["genotype_column"] == "genotype"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.json"))

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{workers: 3")
        with pytest.raises(ValueError, match="parsing JSON"):
            load_config(str(path))

    def test_non_object_json(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            load_config(str(path))

    def test_scan_config_ignores_unknown_keys(self):
        config = ScanConfig.from_dict({"workers": 2, "output_suffix": ".tsv"})
        assert config.workers == 2


@pytest.mark.unit
class TestMergeCliIntoConfig:
    def test_cli_overrides_config(self):
        args = parse_args(
            ["-g", "in.tsv", "-p", "height", "--workers", "4", "--variant-key", "snp"]
        )
        merged = merge_cli_into_config(args, load_config())
        assert merged["workers"] == 4
        assert merged["variant_key"] == ["snp"]

    def test_unset_options_keep_config_values(self):
        args = parse_args(["-g", "in.tsv", "-p", "height"])
        cfg = {**load_config(), "mac_threshold": 7, "skip_degenerate": True}
        merged = merge_cli_into_config(args, cfg)
        assert merged["mac_threshold"] == 7
        assert merged["skip_degenerate"] is True

    def test_does_not_mutate_config(self):
        args = parse_args(["-g", "in.tsv", "-p", "height", "--mac-threshold", "3"])
        cfg = load_config()
        merge_cli_into_config(args, cfg)
        assert cfg["mac_threshold"] == 0
