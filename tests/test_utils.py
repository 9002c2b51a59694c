"""
Unit Tests for Shared Utilities
===============================
Table/config I/O and the statistical helpers.
"""

import numpy as np
import pandas as pd
import pytest

from causal_signet.utils.io import (
    load_config,
    load_edges,
    load_interactions,
    read_table,
    save_edges,
    write_table,
)
from causal_signet.utils.stats import (
    apply_bh_correction,
    scale_to_unit,
    top_n_by_magnitude,
)


class TestTableIO:
    """Tests for delimiter handling and schema checks"""

    def test_suffix_selects_delimiter(self, tmp_path):
        df = pd.DataFrame({"a": [1, 2], "b": ["x", "y"]})
        write_table(df, tmp_path / "t.tsv")
        write_table(df, tmp_path / "t.csv")
        assert "\t" in (tmp_path / "t.tsv").read_text()
        assert "," in (tmp_path / "t.csv").read_text()
        pd.testing.assert_frame_equal(read_table(tmp_path / "t.tsv"), df)
        pd.testing.assert_frame_equal(read_table(tmp_path / "t.csv"), df)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_table(tmp_path / "missing.csv")

    def test_interactions_required_columns(self, tmp_path):
        pd.DataFrame({"source": ["A"]}).to_csv(tmp_path / "i.csv", index=False)
        with pytest.raises(ValueError, match="target"):
            load_interactions(tmp_path / "i.csv", required={"source", "target"})

    def test_edges_round_trip(self, tmp_path):
        edges = pd.DataFrame({
            "source": ["EGFR", "PTEN"], "interaction": [1, -1], "target": ["KRAS", "AKT1"],
        })
        save_edges(edges, tmp_path / "sub" / "net.csv")
        # always tab separated, whatever the suffix
        assert (tmp_path / "sub" / "net.csv").read_text().startswith("source\tinteraction\ttarget")
        save_edges(edges, tmp_path / "net.tsv")
        pd.testing.assert_frame_equal(load_edges(tmp_path / "net.tsv"), edges)

    def test_edges_missing_columns(self, tmp_path):
        pd.DataFrame({"source": ["A"], "target": ["B"]}).to_csv(
            tmp_path / "net.tsv", sep="\t", index=False)
        with pytest.raises(ValueError, match="interaction"):
            load_edges(tmp_path / "net.tsv")

    def test_numeric_looking_identifiers_stay_strings(self, tmp_path):
        edges = pd.DataFrame({"source": ["1"], "interaction": [1], "target": ["2"]})
        save_edges(edges, tmp_path / "net.tsv")
        loaded = load_edges(tmp_path / "net.tsv")
        assert loaded.loc[0, "source"] == "1"


class TestConfig:
    """Tests for YAML config loading"""

    def test_load(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("tf_activity:\n  n_top: 25\n")
        assert load_config(path) == {"tf_activity": {"n_top": 25}}

    def test_empty_file_gives_empty_dict(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


class TestStats:
    """Tests for statistical helpers"""

    def test_bh_correction(self):
        df = pd.DataFrame({"pvalue": [0.01, 0.02, 0.03, 0.5]})
        out = apply_bh_correction(df)
        assert np.allclose(out["FDR"], [0.04, 0.04, 0.04, 0.5])
        assert (out["neg_log10_FDR"] >= 0).all()

    def test_bh_correction_grouped(self):
        df = pd.DataFrame({
            "group": ["a", "a", "b", "b"],
            "pvalue": [0.01, 0.04, 0.01, 0.04],
        })
        out = apply_bh_correction(df, group_cols=["group"])
        assert np.allclose(out["FDR"], [0.02, 0.04, 0.02, 0.04])

    def test_bh_correction_empty(self):
        out = apply_bh_correction(pd.DataFrame({"pvalue": []}))
        assert out.empty
        assert "FDR" in out.columns

    def test_top_n_by_magnitude_keeps_sign(self):
        s = pd.Series({"A": 1.0, "B": -5.0, "C": 3.0, "D": np.nan})
        top = top_n_by_magnitude(s, 2)
        assert top.to_dict() == {"B": -5.0, "C": 3.0}

    def test_top_n_ties_broken_by_name(self):
        s = pd.Series({"Z": 2.0, "A": -2.0, "M": 1.0})
        assert top_n_by_magnitude(s, 2).index.tolist() == ["A", "Z"]

    def test_scale_to_unit(self):
        s = pd.Series({"A": 2.0, "B": -4.0})
        assert scale_to_unit(s).to_dict() == {"A": 0.5, "B": -1.0}
        assert scale_to_unit(pd.Series({"A": 0.0})).to_dict() == {"A": 0.0}
