"""Unit tests for table reading and summary-statistics writing."""

import gzip
import os

import numpy as np
import pandas as pd
import pytest

from assocscan.io import (
    detect_delimiter,
    read_genotype_table,
    read_variant_info,
    write_summary_statistics,
)


@pytest.fixture
def results() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "variant_id": [100, 200, 100, 200],
            "phenotype_name": ["height", "height", "waist/hip ratio", "waist/hip ratio"],
            "beta": [0.5, np.nan, -0.1, 0.2],
            "se": [0.1, np.nan, 0.05, 0.1],
            "p_value": [1e-5, np.nan, 0.04, 0.05],
            "n": [60, 60, 58, 58],
        }
    )


@pytest.mark.unit
class TestDetectDelimiter:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("table.tsv", "\t"),
            ("table.txt", "\t"),
            ("table.tsv.gz", "\t"),
            ("table.csv", ","),
            ("TABLE.CSV.gz", ","),
        ],
    )
    def test_from_extension(self, name, expected):
        assert detect_delimiter(name) == expected

    def test_sniffed_from_content(self, tmp_path):
        path = tmp_path / "table.dat"
        path.write_text("position;genotype;trait\n1;0;1.5\n1;2;2.5\n")
        assert detect_delimiter(str(path)) == ";"

    def test_unreadable_defaults_to_tab(self, tmp_path):
        assert detect_delimiter(str(tmp_path / "absent.dat")) == "\t"


@pytest.mark.unit
class TestReaders:
    def test_read_tsv(self, tmp_path, tiny_table):
        path = tmp_path / "table.tsv"
        tiny_table.to_csv(path, sep="\t", index=False)
        pd.testing.assert_frame_equal(read_genotype_table(str(path)), tiny_table)

    def test_read_gzipped_csv(self, tmp_path, tiny_table):
        path = tmp_path / "table.csv.gz"
        with gzip.open(path, "wt") as fh:
            tiny_table.to_csv(fh, index=False)
        pd.testing.assert_frame_equal(read_genotype_table(str(path)), tiny_table)

    def test_read_variant_info(self, tmp_path):
        path = tmp_path / "info.tsv"
        path.write_text("position\tgenotyped\tinfo\n1\t1\t0.2\n2\t0\t0.9\n")
        info = read_variant_info(str(path))
        assert info["info"].tolist() == [0.2, 0.9]


@pytest.mark.unit
class TestWriteSummaryStatistics:
    def test_one_file_per_phenotype(self, tmp_path, results):
        paths = write_summary_statistics(results, str(tmp_path / "out"), variant_key=["position"])

        assert [os.path.basename(p) for p in paths] == [
            "height.sumstats.tsv",
            "waist_hip_ratio.sumstats.tsv",
        ]
        height = pd.read_csv(paths[0], sep="\t")
        assert list(height.columns) == ["position", "beta", "se", "p_value", "n"]
        assert height["position"].tolist() == [100, 200]
        assert height["beta"].isna().tolist() == [False, True]

    def test_missing_values_written_as_na(self, tmp_path, results):
        paths = write_summary_statistics(results, str(tmp_path))
        with open(paths[0]) as fh:
            lines = fh.read().splitlines()
        assert lines[0].split("\t") == ["variant_id", "beta", "se", "p_value", "n"]
        assert lines[2].split("\t")[1:4] == ["NA", "NA", "NA"]

    def test_composite_ids_expanded(self, tmp_path):
        results = pd.DataFrame(
            {
                "variant_id": [(1, 100), (2, 50)],
                "phenotype_name": ["height", "height"],
                "beta": [0.1, 0.2],
                "se": [0.1, 0.1],
                "p_value": [0.3, 0.04],
                "n": [10, 10],
            }
        )
        (path,) = write_summary_statistics(
            results, str(tmp_path), suffix=".tsv", variant_key=["chromosome", "position"]
        )

        written = pd.read_csv(path, sep="\t")
        assert os.path.basename(path) == "height.tsv"
        assert list(written.columns) == ["chromosome", "position", "beta", "se", "p_value", "n"]
        assert written["chromosome"].tolist() == [1, 2]
        assert written["position"].tolist() == [100, 50]
