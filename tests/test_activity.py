"""
Unit Tests for TF and Pathway Activity Scoring
==============================================
decoupler and gseapy are replaced with fakes so the tests run offline.
"""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

import causal_signet.tf_activity as tf_activity
from causal_signet.pathway_scoring import (
    pathway_node_weights,
    run_gsea_prerank,
    run_pathway_scoring,
)
from causal_signet.tf_activity import (
    differential_tf_activity,
    infer_tf_activity,
    select_measurements,
    ulm_activity,
)


@pytest.fixture
def regulon() -> pd.DataFrame:
    return pd.DataFrame({
        "source": ["STAT3", "STAT3", "NFKB1", "NFKB1"],
        "target": ["SOCS3", "BCL3", "NFKBIA", "TNFAIP3"],
        "weight": [1.0, 1.0, 1.0, -1.0],
    })


def fake_ulm_from(scores: pd.DataFrame, padj: pd.DataFrame):
    """Build a stand-in for dc.mt.ulm returning fixed matrices."""
    calls = []

    def ulm(data, net, tmin=5, verbose=False):
        calls.append({"data": data, "net": net, "tmin": tmin})
        return scores.loc[data.index], padj.loc[data.index]

    ulm.calls = calls
    return ulm


class TestULMActivity:
    """Tests for reshaping decoupler output"""

    def test_long_format_sorted_by_magnitude(self, monkeypatch, regulon):
        scores = pd.DataFrame({"NFKB1": [-4.0], "STAT3": [5.0], "SP1": [0.5]},
                              index=["treated_vs_control"])
        padj = pd.DataFrame({"NFKB1": [0.01], "STAT3": [0.001], "SP1": [0.9]},
                            index=["treated_vs_control"])
        fake = fake_ulm_from(scores, padj)
        monkeypatch.setattr(tf_activity.dc.mt, "ulm", fake)

        stat = pd.DataFrame({"SOCS3": [3.0]}, index=["treated_vs_control"])
        acts = ulm_activity(stat, regulon, tmin=2)

        assert list(acts.columns) == tf_activity.ACTIVITY_COLUMNS
        assert tf_activity.ACTIVITY_COLUMNS == [
            "contrast", "source", "score", "padj", "neg_log10_padj",
        ]
        assert acts["source"].tolist() == ["STAT3", "NFKB1", "SP1"]
        assert acts.loc[0, "neg_log10_padj"] == pytest.approx(3.0)
        assert fake.calls[0]["tmin"] == 2

    def test_infer_tf_activity_multiple_contrasts(self, monkeypatch, regulon):
        idx = ["a_vs_ref", "b_vs_ref"]
        scores = pd.DataFrame({"STAT3": [1.0, -2.0], "NFKB1": [3.0, 0.1]}, index=idx)
        padj = pd.DataFrame({"STAT3": [0.5, 0.01], "NFKB1": [0.01, 0.9]}, index=idx)
        monkeypatch.setattr(tf_activity.dc.mt, "ulm", fake_ulm_from(scores, padj))

        acts = infer_tf_activity(pd.DataFrame({"SOCS3": [1.0, 2.0]}, index=idx), regulon)
        assert acts["contrast"].tolist() == ["a_vs_ref", "a_vs_ref", "b_vs_ref", "b_vs_ref"]
        assert acts["source"].tolist() == ["NFKB1", "STAT3", "STAT3", "NFKB1"]


class TestDifferentialTFActivity:
    """Tests for per-sample activity comparison"""

    def test_welch_test_and_fdr(self, monkeypatch, regulon):
        samples = ["c1", "c2", "c3", "t1", "t2", "t3"]
        scores = pd.DataFrame({
            "STAT3": [0.1, -0.2, 0.0, 3.0, 3.3, 2.9],
            "NFKB1": [0.5, -0.4, 0.1, 0.2, -0.3, 0.4],
        }, index=samples)
        monkeypatch.setattr(tf_activity.dc.mt, "ulm",
                            fake_ulm_from(scores, scores.abs() * 0 + 1.0))
        groups = pd.Series(["control"] * 3 + ["treated"] * 3, index=samples)

        res = differential_tf_activity(
            pd.DataFrame(np.ones((6, 1)), index=samples, columns=["SOCS3"]),
            regulon, groups, test="treated", reference="control",
        )
        assert res.loc[0, "source"] == "STAT3"
        assert res.loc[0, "mean_diff"] > 0
        assert res.loc[0, "FDR"] < 0.05
        assert set(res.columns) >= {"t_stat", "pvalue", "FDR", "neg_log10_FDR"}

    def test_requires_replicates(self, monkeypatch, regulon):
        samples = ["c1", "t1", "t2"]
        scores = pd.DataFrame({"STAT3": [0.0, 1.0, 2.0]}, index=samples)
        monkeypatch.setattr(tf_activity.dc.mt, "ulm", fake_ulm_from(scores, scores))
        groups = pd.Series(["control", "treated", "treated"], index=samples)
        with pytest.raises(ValueError, match="two samples"):
            differential_tf_activity(scores, regulon, groups, "treated", "control")


class TestSelectMeasurements:
    """Tests for choosing measured nodes"""

    def test_top_n_keeps_sign(self, tf_activities):
        meas = select_measurements(tf_activities, n_top=2)
        assert meas.to_dict() == {"STAT3": 5.2, "NFKB1": -4.1}
        assert meas.index.name == "node"
        assert meas.name == "score"

    def test_restricted_to_network_nodes(self, tf_activities):
        meas = select_measurements(tf_activities, n_top=10, network_nodes={"TP53", "MYC"})
        assert meas.index.tolist() == ["TP53", "MYC"]

    def test_padj_threshold(self, tf_activities):
        meas = select_measurements(tf_activities, n_top=10, padj_threshold=0.05)
        assert set(meas.index) == {"STAT3", "NFKB1", "TP53"}

    def test_empty(self, tf_activities):
        assert select_measurements(tf_activities.iloc[0:0]).empty
        assert select_measurements(tf_activities, network_nodes=set()).empty


class TestPathwayWeights:
    """Tests for mapping PROGENy scores onto network nodes"""

    @pytest.fixture
    def progeny(self) -> pd.DataFrame:
        return pd.DataFrame({
            "contrast": ["c"] * 4,
            "source": ["TNFa", "JAK-STAT", "p53", "Unmapped"],
            "score": [8.0, -4.0, 2.0, 1.0],
            "padj": [0.001, 0.01, 0.2, 0.5],
            "neg_log10_padj": [3.0, 2.0, 0.7, 0.3],
        })

    def test_scaled_weights(self, progeny):
        w = pathway_node_weights(progeny)
        assert w.to_dict() == {"STAT3": -0.5, "TNF": 1.0, "TP53": 0.25}
        assert w.index.name == "node"

    def test_network_restriction(self, progeny):
        w = pathway_node_weights(progeny, network_nodes={"TNF"})
        assert w.to_dict() == {"TNF": 1.0}

    def test_custom_mapping(self, progeny):
        w = pathway_node_weights(progeny, pathway_nodes={"Unmapped": "GENE1"})
        assert w.to_dict() == {"GENE1": 0.125}

    def test_empty(self):
        assert pathway_node_weights(pd.DataFrame(columns=["contrast", "source", "score"])).empty


class TestGSEA:
    """Tests for the gseapy prerank wrapper"""

    def test_prerank_ranking_and_sorting(self, monkeypatch):
        captured = {}

        def fake_prerank(rnk, gene_sets, **kwargs):
            captured["rnk"] = rnk
            captured["kwargs"] = kwargs
            return SimpleNamespace(res2d=pd.DataFrame({
                "Term": ["HALLMARK_A", "HALLMARK_B"],
                "NES": ["-1.5", "2.1"],
            }))

        monkeypatch.setattr("causal_signet.pathway_scoring.gp.prerank", fake_prerank)
        de = pd.DataFrame({"stat": [1.0, -3.0, np.nan, 5.0]}, index=["A", "B", "C", "D"])
        res = run_gsea_prerank(de, "hallmark.gmt", permutation_num=10)

        assert captured["rnk"].index.tolist() == ["D", "A", "B"]
        assert captured["kwargs"]["permutation_num"] == 10
        assert captured["kwargs"]["outdir"] is None
        assert res["Term"].tolist() == ["HALLMARK_B", "HALLMARK_A"]

    def test_run_pathway_scoring_from_local_footprints(self, monkeypatch, tmp_path):
        progeny_path = tmp_path / "progeny.csv"
        pd.DataFrame({
            "source": ["TNFa", "TNFa"], "target": ["NFKBIA", "TNFAIP3"],
            "weight": [2.0, 1.5], "padj": [0.0, 0.0],
        }).to_csv(progeny_path, index=False)
        scores = pd.DataFrame({"TNFa": [3.0]}, index=["c"])
        monkeypatch.setattr(tf_activity.dc.mt, "ulm", fake_ulm_from(scores, scores * 0.01))

        out = run_pathway_scoring(
            pd.DataFrame({"NFKBIA": [2.0]}, index=["c"]),
            tmp_path / "pathways", progeny_path=progeny_path,
        )
        assert (tmp_path / "pathways" / "progeny_activities.csv").exists()
        assert (tmp_path / "pathways" / "node_weights.tsv").exists()
        assert out["weights"].to_dict() == {"TNF": 1.0}
        assert "gsea" not in out
