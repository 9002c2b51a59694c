"""End-to-end workflow: counts → DE → TF/pathway activity → causal network.

Stages (each writes to its own subdirectory of the output directory):
  1. preprocessing            align, low-count filter, log-CPM
  2. differential_expression  pyDESeq2 Wald test for one contrast
  3. signed_network           sign-consistent OmniPath PKN
  4. tf_activity              CollecTRI ULM on the Wald statistic; top TFs
                              in the PKN become measurements
  5. pathway_scoring          PROGENy ULM to node weights (+ optional GSEA)
  6. causal_network           CARNIVAL solution and its summary

A stage whose main artifact already exists is loaded instead of recomputed
unless `overwrite: true` is set in the config.

Usage:
    python -m causal_signet.pipeline --config configs/default_config.yaml
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

from .causal_network import load_node_values, run_causal_network
from .differential_expression import (
    contrast_name,
    de_statistic_matrix,
    load_de_results,
    run_differential_expression,
)
from .pathway_scoring import run_pathway_scoring
from .preprocessing import load_counts, load_samples, run_preprocessing
from .signed_network import network_nodes, run_signed_network
from .tf_activity import run_tf_activity
from .utils.io import load_config, load_edges, read_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)


def _reuse(path: Path, overwrite: bool) -> bool:
    if path.exists() and not overwrite:
        log.info("Reusing %s", path)
        return True
    return False


def run_pipeline(cfg: dict) -> dict:
    """Run every stage of the workflow from a parsed config.

    Args:
        cfg: Configuration dictionary (see configs/default_config.yaml).
            Requires paths.counts, paths.samples, paths.output_dir and
            differential_expression.test / .reference.

    Returns:
        Dict with the main result of each stage.

    Raises:
        ValueError: If a required config key is missing.
    """
    paths = cfg.get("paths", {})
    for key in ("counts", "samples", "output_dir"):
        if not paths.get(key):
            raise ValueError(f"Config is missing paths.{key}")

    pp_cfg = cfg.get("preprocessing", {})
    de_cfg = cfg.get("differential_expression", {})
    sn_cfg = cfg.get("signed_network", {})
    tf_cfg = cfg.get("tf_activity", {})
    ps_cfg = cfg.get("pathway_scoring", {})
    cn_cfg = cfg.get("causal_network", {})
    for key in ("test", "reference"):
        if key not in de_cfg:
            raise ValueError(f"Config is missing differential_expression.{key}")

    out = Path(paths["output_dir"])
    overwrite = bool(cfg.get("overwrite", False))
    plot = bool(cfg.get("plot", False))
    condition_col = pp_cfg.get("condition_col", "condition")
    results = {}

    # 1. Preprocessing
    pp_dir = out / "preprocessing"
    if _reuse(pp_dir / "counts_filtered.csv", overwrite):
        counts = load_counts(pp_dir / "counts_filtered.csv")
        samples = load_samples(paths["samples"], condition_col=condition_col)
        log_cpm = read_table(pp_dir / "log_cpm.csv", index_col=0)
    else:
        pp = run_preprocessing(
            paths["counts"], paths["samples"], pp_dir,
            condition_col=condition_col,
            min_count=pp_cfg.get("min_count", 10),
            min_samples=pp_cfg.get("min_samples"),
        )
        counts, samples, log_cpm = pp["counts"], pp["samples"], pp["log_cpm"]

    # 2. Differential expression
    de_dir = out / "differential_expression"
    if _reuse(de_dir / "de_results.csv", overwrite):
        de = load_de_results(de_dir / "de_results.csv")
    else:
        de = run_differential_expression(
            counts, samples, de_dir,
            condition_col=condition_col,
            test=de_cfg["test"],
            reference=de_cfg["reference"],
            alpha=de_cfg.get("alpha", 0.05),
            lfc_threshold=de_cfg.get("lfc_threshold", 1.0),
            n_cpus=de_cfg.get("n_cpus", 1),
            plot=plot,
        )
    results["de"] = de
    contrast = contrast_name(cfg)
    stat_matrix = de_statistic_matrix(de, name=contrast)

    # 3. Signed network
    network_path = out / "signed_network" / "signed_network.tsv"
    if _reuse(network_path, overwrite):
        network = load_edges(network_path)
    else:
        network = run_signed_network(
            network_path,
            interactions_path=paths.get("interactions"),
            raw_output_path=out / "signed_network" / "omnipath_interactions.tsv",
            url=sn_cfg.get("url", "https://omnipathdb.org/interactions"),
            params=sn_cfg.get("params"),
            columns=sn_cfg.get("columns"),
        )
    results["network"] = network
    nodes = network_nodes(network)

    # 4. TF activity
    tf_dir = out / "tf_activity"
    sample_level = bool(tf_cfg.get("sample_level", False))
    if _reuse(tf_dir / "measurements.tsv", overwrite):
        measurements = load_node_values(tf_dir / "measurements.tsv")
    else:
        tf = run_tf_activity(
            stat_matrix, tf_dir,
            organism=tf_cfg.get("organism", "human"),
            collectri_path=paths.get("collectri"),
            network=network,
            tmin=tf_cfg.get("tmin", 5),
            n_top=tf_cfg.get("n_top", 50),
            padj_threshold=tf_cfg.get("padj_threshold"),
            sample_matrix=log_cpm.T if sample_level else None,
            groups=samples[condition_col] if sample_level else None,
            test=de_cfg["test"],
            reference=de_cfg["reference"],
            plot=plot,
        )
        measurements = tf["measurements"]
    results["measurements"] = measurements

    # 5. Pathway scoring
    ps_dir = out / "pathway_scoring"
    if _reuse(ps_dir / "node_weights.tsv", overwrite):
        weights = load_node_values(ps_dir / "node_weights.tsv")
    else:
        ps = run_pathway_scoring(
            stat_matrix, ps_dir,
            de_results=de,
            organism=ps_cfg.get("organism", "human"),
            progeny_top=ps_cfg.get("progeny_top", 500),
            progeny_path=paths.get("progeny"),
            gene_sets=ps_cfg.get("gene_sets"),
            pathway_nodes=ps_cfg.get("pathway_nodes"),
            network_nodes=nodes,
            tmin=ps_cfg.get("tmin", 5),
            plot=plot,
        )
        weights = ps["weights"]
    results["weights"] = weights if cn_cfg.get("use_weights", True) else pd.Series(dtype=float)

    # 6. Causal network
    if not cn_cfg.get("enabled", True):
        log.info("Causal network stage disabled in config.")
        return results
    cn = run_causal_network(
        network, measurements, out / "causal_network",
        perturbations=cn_cfg.get("perturbations"),
        weights=results["weights"],
        solver=cn_cfg.get("solver", "lpSolve"),
        solver_path=cn_cfg.get("solver_path"),
        time_limit=cn_cfg.get("time_limit", 3600),
        threads=cn_cfg.get("threads", 1),
        min_edge_weight=cn_cfg.get("min_edge_weight", 0.0),
        rscript_path=cn_cfg.get("rscript_path", "Rscript"),
        plot=plot,
    )
    results["causal_network"] = cn
    return results


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the full transcriptomics → causal network workflow."
    )
    parser.add_argument("--config", required=True, help="Path to YAML config file.")
    parser.add_argument("--output-dir", default=None, help="Override paths.output_dir.")
    parser.add_argument("--overwrite", action="store_true", help="Recompute every stage.")
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    cfg = load_config(args.config)
    cfg.setdefault("paths", {})
    if args.output_dir:
        cfg["paths"]["output_dir"] = args.output_dir
    if args.overwrite:
        cfg["overwrite"] = True
    if args.plot:
        cfg["plot"] = True

    run_pipeline(cfg)


if __name__ == "__main__":
    main()
