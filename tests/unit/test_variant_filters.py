"""
Unit tests for the minor allele count and imputation info filters.

Covers MAC computation on hand-checkable data, the threshold edge cases
(0 excludes nothing, > 2n excludes everything), idempotence, order
preservation, composite keys and the info-score filter's treatment of
genotyped, imputed and unannotated variants.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from assocscan.association import (
    AssociationResult,
    AssociationScanner,
    ScanConfig,
    compute_mac,
    filter_by_info,
    filter_by_mac,
)
from assocscan.error_handling import MissingColumnError


@pytest.fixture
def tiny_results(tiny_table) -> pd.DataFrame:
    """Scan output for tiny_table with two phenotypes."""
    table = tiny_table.assign(trait2=[0.5, 0.1, 0.9, 0.3] * 3)
    return AssociationScanner(ScanConfig(workers=1)).scan(table, "position", ["trait", "trait2"])


# ---------------------------------------------------------------------------
# compute_mac
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestComputeMac:
    def test_hand_computed_values(self, tiny_table):
        mac = compute_mac(tiny_table, "position")
        # pos 1: S=5, 2n-S=3 ; pos 2: S=1 ; pos 3: S=8, 2n-S=0
        assert mac.to_dict() == {1: 3, 2: 1, 3: 0}

    def test_missing_dosages_excluded_from_n(self):
        table = pd.DataFrame({"position": [1, 1, 1], "genotype": [0, np.nan, 1]})
        assert compute_mac(table, "position").to_dict() == {1: 1}

    def test_composite_key(self, tiny_table):
        table = tiny_table.assign(chromosome=2)
        mac = compute_mac(table, ["chromosome", "position"])
        assert dict(zip(mac.index.tolist(), mac.tolist())) == {(2, 1): 3, (2, 2): 1, (2, 3): 0}

    def test_missing_genotype_column(self, tiny_table):
        with pytest.raises(MissingColumnError):
            compute_mac(tiny_table, "position", genotype_column="dosage")


# ---------------------------------------------------------------------------
# filter_by_mac
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestFilterByMac:
    def test_threshold_zero_excludes_nothing(self, tiny_results, tiny_table):
        kept, excluded = filter_by_mac(tiny_results, tiny_table, "position", 0)
        assert excluded == set()
        pd.testing.assert_frame_equal(kept, tiny_results)

    def test_threshold_above_twice_n_excludes_everything(self, tiny_results, tiny_table):
        kept, excluded = filter_by_mac(tiny_results, tiny_table, "position", 2 * 4 + 1)
        assert excluded == {1, 2, 3}
        assert kept.empty

    def test_excludes_all_phenotypes_of_a_variant(self, tiny_results, tiny_table):
        kept, excluded = filter_by_mac(tiny_results, tiny_table, "position", 2)
        assert excluded == {2, 3}
        assert kept["variant_id"].tolist() == [1, 1]
        assert kept["phenotype_name"].tolist() == ["trait", "trait2"]

    def test_idempotent(self, tiny_results, tiny_table):
        once, excluded_once = filter_by_mac(tiny_results, tiny_table, "position", 2)
        twice, _ = filter_by_mac(once, tiny_table, "position", 2)
        pd.testing.assert_frame_equal(once, twice)
        assert excluded_once == {2, 3}

    def test_preserves_order(self, long_table):
        results = AssociationScanner(ScanConfig(workers=1)).scan(
            long_table, "position", ["height", "bmi"]
        )
        kept, _ = filter_by_mac(results, long_table, "position", 1)
        assert kept.index.tolist() == results.index.tolist()

    def test_does_not_mutate_input(self, tiny_results, tiny_table):
        before = tiny_results.copy()
        filter_by_mac(tiny_results, tiny_table, "position", 2)
        pd.testing.assert_frame_equal(before, tiny_results)

    def test_accepts_result_records(self, tiny_table):
        records = [
            AssociationResult(v, "trait", 0.1, 0.05, 0.04, 4) for v in (1, 2, 3)
        ]
        kept, excluded = filter_by_mac(records, tiny_table, "position", 2)
        assert isinstance(kept, list)
        assert [r.variant_id for r in kept] == [1]
        assert excluded == {2, 3}

    @pytest.mark.parametrize("threshold", [-1, 1.5, "5", True])
    def test_invalid_threshold(self, tiny_results, tiny_table, threshold):
        with pytest.raises(ValueError, match="MAC threshold"):
            filter_by_mac(tiny_results, tiny_table, "position", threshold)

    def test_logs_exclusion_fraction(self, tiny_results, tiny_table, caplog):
        with caplog.at_level(logging.INFO, logger="assocscan"):
            filter_by_mac(tiny_results, tiny_table, "position", 2)
        assert "excluded 2/3 variants" in caplog.text


# ---------------------------------------------------------------------------
# filter_by_info
# ---------------------------------------------------------------------------


@pytest.fixture
def variant_info() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "position": [1, 2, 3],
            "id": ["rs1", "rs2", "rs3"],
            "ref": ["A", "C", "G"],
            "alt": ["G", "T", "A"],
            "genotyped": [1, 0, 0],
            "info": [0.2, 0.95, np.nan],
            "ref_panel_af": [0.3, 0.1, 0.5],
        }
    )


@pytest.mark.unit
class TestFilterByInfo:
    def test_genotyped_kept_low_and_missing_info_excluded(self, tiny_results, variant_info):
        kept, excluded = filter_by_info(tiny_results, variant_info, "position", 0.8)
        # rs1 is genotyped despite its low info; rs3 has no info score
        assert excluded == {3}
        assert sorted(set(kept["variant_id"])) == [1, 2]

    def test_without_genotyped_column_everything_is_imputed(self, tiny_results, variant_info):
        info = variant_info.drop(columns="genotyped")
        _, excluded = filter_by_info(tiny_results, info, "position", 0.8)
        assert excluded == {1, 3}

    def test_text_flags(self, tiny_results, variant_info):
        info = variant_info.assign(genotyped=["yes", "no", "TRUE"])
        _, excluded = filter_by_info(tiny_results, info, "position", 0.8)
        assert excluded == set()

    def test_unannotated_variants_kept_with_warning(self, tiny_results, variant_info, caplog):
        info = variant_info[variant_info["position"] != 2]
        with caplog.at_level(logging.WARNING, logger="assocscan"):
            kept, _ = filter_by_info(tiny_results, info, "position", 0.8)
        assert 2 in kept["variant_id"].tolist()
        assert "no metadata" in caplog.text

    def test_missing_info_column(self, tiny_results, variant_info):
        with pytest.raises(MissingColumnError):
            filter_by_info(tiny_results, variant_info, "position", 0.8, info_column="r2")
