"""
Unit Tests for the End-to-End Pipeline
======================================
Config validation and artifact reuse, with every stage output pre-written
so no external service or solver is touched.
"""

from unittest.mock import patch

import pandas as pd
import pytest

from causal_signet.pipeline import run_pipeline


@pytest.fixture
def workspace(tmp_path):
    """Input files plus existing stage outputs under results/."""
    counts = pd.DataFrame(
        {"s1": [10, 20], "s2": [12, 18], "s3": [40, 5], "s4": [44, 6]},
        index=pd.Index(["IL6", "SOX2"], name="gene"),
    )
    samples = pd.DataFrame(
        {"condition": ["control", "control", "treated", "treated"]},
        index=pd.Index(["s1", "s2", "s3", "s4"], name="sample"),
    )
    counts.to_csv(tmp_path / "counts.csv")
    samples.to_csv(tmp_path / "samples.csv")

    out = tmp_path / "results"
    (out / "preprocessing").mkdir(parents=True)
    counts.to_csv(out / "preprocessing" / "counts_filtered.csv")
    counts.astype(float).to_csv(out / "preprocessing" / "log_cpm.csv")

    (out / "differential_expression").mkdir()
    pd.DataFrame(
        {"log2FoldChange": [2.0, -1.5], "stat": [6.0, -4.0], "padj": [0.001, 0.01]},
        index=pd.Index(["IL6", "SOX2"], name="gene"),
    ).to_csv(out / "differential_expression" / "de_results.csv")

    (out / "signed_network").mkdir()
    pd.DataFrame({
        "source": ["TNF", "NFKB1"], "interaction": [1, 1], "target": ["NFKB1", "IL6"],
    }).to_csv(out / "signed_network" / "signed_network.tsv", sep="\t", index=False)

    (out / "tf_activity").mkdir()
    pd.DataFrame({"node": ["NFKB1"], "score": [3.5]}).to_csv(
        out / "tf_activity" / "measurements.tsv", sep="\t", index=False)

    (out / "pathway_scoring").mkdir()
    pd.DataFrame({"node": ["TNF"], "weight": [0.9]}).to_csv(
        out / "pathway_scoring" / "node_weights.tsv", sep="\t", index=False)

    return {
        "paths": {
            "counts": str(tmp_path / "counts.csv"),
            "samples": str(tmp_path / "samples.csv"),
            "output_dir": str(out),
        },
        "differential_expression": {"test": "treated", "reference": "control"},
        "plot": False,
    }


class TestConfigValidation:
    """Tests for required config keys"""

    def test_missing_path(self):
        with pytest.raises(ValueError, match="paths.counts"):
            run_pipeline({"paths": {"samples": "s.csv", "output_dir": "out"}})

    def test_missing_contrast(self, workspace):
        workspace["differential_expression"] = {"test": "treated"}
        with pytest.raises(ValueError, match="reference"):
            run_pipeline(workspace)


class TestArtifactReuse:
    """Tests for resuming from existing stage outputs"""

    def test_reuse_without_solver(self, workspace):
        workspace["causal_network"] = {"enabled": False}
        results = run_pipeline(workspace)
        assert results["measurements"].to_dict() == {"NFKB1": 3.5}
        assert results["weights"].to_dict() == {"TNF": 0.9}
        assert len(results["network"]) == 2
        assert "causal_network" not in results

    def test_solver_receives_stage_outputs(self, workspace):
        workspace["causal_network"] = {"perturbations": {"TNF": 1}, "use_weights": False}
        with patch("causal_signet.pipeline.run_causal_network",
                   return_value={"agreement": {}}) as run_cn:
            results = run_pipeline(workspace)
        kwargs = run_cn.call_args.kwargs
        assert kwargs["perturbations"] == {"TNF": 1}
        assert kwargs["weights"].empty
        assert run_cn.call_args.args[1].to_dict() == {"NFKB1": 3.5}
        assert results["causal_network"] == {"agreement": {}}


class TestComputePath:
    """Tests for the wiring between stages when every stage is recomputed"""

    def test_stage_arguments(self, tmp_path, workspace, interactions):
        src = tmp_path / "omnipath.tsv"
        interactions.to_csv(src, sep="\t", index=False)
        workspace["paths"]["interactions"] = str(src)
        workspace["overwrite"] = True
        workspace["tf_activity"] = {"sample_level": True, "n_top": 10}
        workspace["causal_network"] = {"enabled": False}

        counts = pd.DataFrame({"s1": [5, 7], "s2": [6, 8]}, index=["IL6", "SOX2"])
        samples = pd.DataFrame({"condition": ["control", "treated"]}, index=["s1", "s2"])
        log_cpm = counts.astype(float)
        de = pd.DataFrame({"stat": [3.0, -2.0]}, index=["IL6", "SOX2"])
        measurements = pd.Series({"STAT3": 2.0}, name="score")
        weights = pd.Series({"TNF": 0.5}, name="weight")

        with patch("causal_signet.pipeline.run_preprocessing",
                   return_value={"counts": counts, "samples": samples, "log_cpm": log_cpm}) as pp, \
             patch("causal_signet.pipeline.run_differential_expression", return_value=de) as run_de, \
             patch("causal_signet.pipeline.run_tf_activity",
                   return_value={"measurements": measurements}) as run_tf, \
             patch("causal_signet.pipeline.run_pathway_scoring",
                   return_value={"weights": weights}) as run_ps, \
             patch("causal_signet.signed_network.fetch_omnipath_interactions") as fetch:
            results = run_pipeline(workspace)

        fetch.assert_not_called()
        assert pp.call_args.args[0] == workspace["paths"]["counts"]

        de_kwargs = run_de.call_args.kwargs
        assert (de_kwargs["test"], de_kwargs["reference"]) == ("treated", "control")
        assert run_de.call_args.args[0] is counts

        assert len(results["network"]) == 4
        nodes = set(results["network"]["source"]) | set(results["network"]["target"])

        stat_matrix = run_tf.call_args.args[0]
        assert stat_matrix.index.tolist() == ["treated_vs_control"]
        tf_kwargs = run_tf.call_args.kwargs
        pd.testing.assert_frame_equal(tf_kwargs["sample_matrix"], log_cpm.T)
        assert tf_kwargs["groups"].to_dict() == {"s1": "control", "s2": "treated"}
        assert (tf_kwargs["test"], tf_kwargs["reference"]) == ("treated", "control")
        assert tf_kwargs["n_top"] == 10
        assert tf_kwargs["network"] is results["network"]

        ps_kwargs = run_ps.call_args.kwargs
        assert ps_kwargs["network_nodes"] == nodes
        assert ps_kwargs["de_results"] is de

        assert results["measurements"] is measurements
        assert results["weights"] is weights
        out = tmp_path / "results" / "signed_network" / "signed_network.tsv"
        assert out.read_text().startswith("source\tinteraction\ttarget")
