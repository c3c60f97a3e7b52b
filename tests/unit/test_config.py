"""
Unit tests for configuration loading.
"""

import pytest

from warehouse_recon.config import DuplicateThresholds, ReconConfig


class TestReconConfigDefaults:

    def test_defaults(self):
        config = ReconConfig()

        assert config.batch_size == 1000
        assert config.retry_chunk_size == 100
        assert config.min_chunk_size == 1
        assert config.max_depth == 4
        assert config.diff_field_limit == 8
        assert config.diff_key_sample == 50
        assert config.target_only_sample_size == 10
        assert config.staging_ttl_seconds == 86400
        assert config.duplicate_thresholds == DuplicateThresholds(acceptable=0, critical=100)

    @pytest.mark.parametrize("overrides", [
        {"batch_size": 0},
        {"min_chunk_size": 200},
        {"settle_delay": -1},
        {"max_parallel_queries": 0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ReconConfig(**overrides)

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            DuplicateThresholds(acceptable=10, critical=5)
        with pytest.raises(ValueError):
            DuplicateThresholds(acceptable=-1)


class TestReconConfigLoading:
    """Test layered configuration sources."""

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            ReconConfig.from_dict({"batchsize": 10})

    def test_from_dict_builds_thresholds(self):
        config = ReconConfig.from_dict({"duplicate_thresholds": {"acceptable": 2, "critical": 20}})

        assert config.duplicate_thresholds.acceptable == 2
        assert config.duplicate_thresholds.critical == 20

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "recon.yaml"
        path.write_text("batch_size: 500\nstaging_schema: recon\nfree_text_markers: [memo]\n")

        config = ReconConfig.from_yaml(str(path))

        assert config.batch_size == 500
        assert config.staging_schema == "recon"
        assert config.free_text_markers == ["memo"]

    def test_from_yaml_requires_mapping(self, tmp_path):
        path = tmp_path / "recon.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError):
            ReconConfig.from_yaml(str(path))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RECON_BATCH_SIZE", "250")
        monkeypatch.setenv("RECON_CLEANUP_ON_FAILURE", "false")
        monkeypatch.setenv("RECON_SETTLE_DELAY", "0.5")
        monkeypatch.setenv("RECON_WAREHOUSE_DSN", "dbname=test")
        monkeypatch.setenv("RECON_DUPLICATE_THRESHOLDS", "5,50")

        config = ReconConfig.from_env()

        assert config.batch_size == 250
        assert config.cleanup_on_failure is False
        assert config.settle_delay == 0.5
        assert config.warehouse_dsn == "dbname=test"
        assert config.duplicate_thresholds == DuplicateThresholds(acceptable=5, critical=50)

    def test_from_env_rejects_bad_integer(self, monkeypatch):
        monkeypatch.setenv("RECON_BATCH_SIZE", "many")

        with pytest.raises(ValueError, match="batch_size"):
            ReconConfig.from_env()

    def test_load_layers_env_over_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "recon.yaml"
        path.write_text("batch_size: 500\nretry_chunk_size: 50\n")
        monkeypatch.setenv("RECON_BATCH_SIZE", "750")

        config = ReconConfig.load(str(path))

        assert config.batch_size == 750
        assert config.retry_chunk_size == 50
