"""Transcription factor activity inference with decoupler and CollecTRI.

TF activities are estimated with decoupler's univariate linear model (ULM):
for each TF, the gene-level statistics are regressed on the signed CollecTRI
regulon weights, and the t-value of the slope is the activity score. A
positive score means the TF's activated targets are up and its repressed
targets are down.

Two inputs are supported:
  - contrast level: the DESeq2 Wald statistic of one contrast (1 × genes);
    this is what feeds the causal network as measured nodes.
  - sample level: log-CPM per sample (samples × genes); per-sample
    activities are then compared between conditions with Welch's t-test and
    BH correction.

Usage:
    python -m causal_signet.tf_activity --config configs/default_config.yaml \\
        --de-file results/differential_expression/de_results.csv \\
        --network results/network/signed_network.tsv \\
        --output-dir results/tf_activity/
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

import decoupler as dc
import numpy as np
import pandas as pd
from scipy.stats import ttest_ind

from .utils.io import load_config, load_edges, read_table, write_table
from .utils.stats import apply_bh_correction, top_n_by_magnitude

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

ACTIVITY_COLUMNS = ["contrast", "source", "score", "padj", "neg_log10_padj"]


# ── Prior knowledge ───────────────────────────────────────────────────────────

def load_collectri(organism: str = "human", path: Optional[str | Path] = None) -> pd.DataFrame:
    """Load the CollecTRI TF–target regulon.

    Args:
        organism: Organism name passed to decoupler.
        path: Optional local copy (CSV/TSV with source, target, weight);
            used instead of downloading when given.

    Returns:
        DataFrame with columns ['source', 'target', 'weight'].
    """
    if path is not None:
        net = read_table(path)
    else:
        log.info("Downloading CollecTRI regulons (%s)", organism)
        net = dc.op.collectri(organism=organism)
    net = net[["source", "target", "weight"]]
    log.info("CollecTRI: %d interactions, %d TFs", len(net), net["source"].nunique())
    return net


# ── ULM scoring ───────────────────────────────────────────────────────────────

def ulm_activity(
    stat_matrix: pd.DataFrame,
    net: pd.DataFrame,
    tmin: int = 5,
) -> pd.DataFrame:
    """Score sources (TFs or pathways) with decoupler's ULM.

    Args:
        stat_matrix: Observations × genes matrix of gene-level statistics.
        net: Prior-knowledge network with columns source, target, weight.
        tmin: Minimum number of targets measured for a source to be scored.

    Returns:
        Long-format DataFrame with columns ['contrast', 'source', 'score',
        'padj', 'neg_log10_padj'], one row per observation × source, sorted
        by decreasing |score| within each observation. decoupler already
        adjusts the p-values across sources.
    """
    scores, padj = dc.mt.ulm(data=stat_matrix, net=net, tmin=tmin, verbose=False)

    long_scores = scores.rename_axis(index="contrast", columns="source").stack().rename("score")
    long_padj = padj.rename_axis(index="contrast", columns="source").stack().rename("padj")
    df = pd.concat([long_scores, long_padj], axis=1).reset_index()
    df["neg_log10_padj"] = -np.log10(df["padj"].clip(lower=np.finfo(float).tiny))

    df["abs_score"] = df["score"].abs()
    df = (
        df.sort_values(["contrast", "abs_score", "source"], ascending=[True, False, True])
        .drop(columns="abs_score")
        .reset_index(drop=True)
    )
    return df[ACTIVITY_COLUMNS]


def infer_tf_activity(
    stat_matrix: pd.DataFrame,
    net: pd.DataFrame,
    tmin: int = 5,
) -> pd.DataFrame:
    """Infer TF activities from a contrast statistic matrix.

    Args:
        stat_matrix: Contrasts × genes matrix (e.g. DESeq2 Wald statistics).
        net: CollecTRI regulon.
        tmin: Minimum measured targets per TF.

    Returns:
        Long-format activity table (see ulm_activity()).
    """
    acts = ulm_activity(stat_matrix, net, tmin=tmin)
    log.info("TF activity: %d TFs scored, %d with padj < 0.05",
             acts["source"].nunique(), int((acts["padj"] < 0.05).sum()))
    return acts


def differential_tf_activity(
    sample_matrix: pd.DataFrame,
    net: pd.DataFrame,
    groups: pd.Series,
    test: str,
    reference: str,
    tmin: int = 5,
) -> pd.DataFrame:
    """Compare per-sample TF activities between two conditions.

    Scores every sample with ULM, then runs Welch's t-test per TF between
    the `test` and `reference` samples and applies BH correction.

    Args:
        sample_matrix: Samples × genes expression matrix (e.g. log-CPM).
        net: CollecTRI regulon.
        groups: Series mapping sample ID → condition.
        test: Condition in the numerator of the difference.
        reference: Reference condition.
        tmin: Minimum measured targets per TF.

    Returns:
        DataFrame with columns ['source', 'mean_diff', 't_stat', 'pvalue',
        'FDR', 'neg_log10_FDR'] sorted by FDR.
    """
    scores, _ = dc.mt.ulm(data=sample_matrix, net=net, tmin=tmin, verbose=False)
    test_ids = groups.index[groups.astype(str) == test].intersection(scores.index)
    ref_ids = groups.index[groups.astype(str) == reference].intersection(scores.index)
    if len(test_ids) < 2 or len(ref_ids) < 2:
        raise ValueError(
            f"Need at least two samples per group, got {len(test_ids)} '{test}' "
            f"and {len(ref_ids)} '{reference}'."
        )

    records = []
    for tf in scores.columns:
        t_vals = scores.loc[test_ids, tf].values
        r_vals = scores.loc[ref_ids, tf].values
        t_stat, pvalue = ttest_ind(t_vals, r_vals, equal_var=False)
        records.append({
            "source": tf,
            "mean_diff": float(t_vals.mean() - r_vals.mean()),
            "t_stat": float(t_stat),
            "pvalue": float(pvalue),
        })

    result = apply_bh_correction(pd.DataFrame(records), pvalue_col="pvalue")
    return result.sort_values(["FDR", "source"]).reset_index(drop=True)


# ── Measurement selection ─────────────────────────────────────────────────────

def select_measurements(
    activities: pd.DataFrame,
    n_top: int = 50,
    network_nodes: Optional[set] = None,
    padj_threshold: Optional[float] = None,
    contrast: Optional[str] = None,
) -> pd.Series:
    """Pick the TFs used as measured nodes for the causal network solver.

    TFs are restricted to nodes present in the prior-knowledge network (the
    solver cannot place a measurement on a node it does not know), optionally
    filtered by adjusted p-value, then the n_top with the largest |score| are
    kept with their sign.

    Args:
        activities: Long-format activity table from infer_tf_activity().
        n_top: Maximum number of measurements.
        network_nodes: Node names of the signed network.
        padj_threshold: Optional maximum adjusted p-value.
        contrast: Contrast to use when several were scored. Defaults to the
            first one.

    Returns:
        Series mapping TF → activity score.
    """
    if activities.empty:
        return pd.Series(dtype=float, name="score")

    contrast = contrast if contrast is not None else activities["contrast"].iloc[0]
    df = activities[activities["contrast"] == contrast]
    if padj_threshold is not None:
        df = df[df["padj"] < padj_threshold]
    if network_nodes is not None:
        n_before = len(df)
        df = df[df["source"].isin(network_nodes)]
        log.info("Measurements: %d / %d TFs present in the network", len(df), n_before)

    selected = top_n_by_magnitude(df.set_index("source")["score"], n_top)
    selected.index.name = "node"
    if selected.empty:
        log.warning("No TF measurements selected for contrast '%s'.", contrast)
    return selected.rename("score")


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_tf_activity(
    stat_matrix: pd.DataFrame,
    output_dir: str | Path,
    organism: str = "human",
    collectri_path: Optional[str | Path] = None,
    network: Optional[pd.DataFrame] = None,
    tmin: int = 5,
    n_top: int = 50,
    padj_threshold: Optional[float] = None,
    sample_matrix: Optional[pd.DataFrame] = None,
    groups: Optional[pd.Series] = None,
    test: Optional[str] = None,
    reference: Optional[str] = None,
    plot: bool = False,
) -> dict:
    """Infer TF activities and select solver measurements.

    When a samples × genes matrix and the sample groups are given, per-sample
    activities are also compared between `test` and `reference`.

    Returns:
        Dict with keys 'activities' (long DataFrame), 'measurements'
        (Series node → score) and, for sample-level input, 'by_sample'.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    net = load_collectri(organism=organism, path=collectri_path)
    acts = infer_tf_activity(stat_matrix, net, tmin=tmin)
    write_table(acts, output_dir / "tf_activities.csv")

    nodes = None
    if network is not None:
        nodes = set(network["source"]) | set(network["target"])
    measurements = select_measurements(
        acts, n_top=n_top, network_nodes=nodes, padj_threshold=padj_threshold,
    )
    write_table(measurements.reset_index(), output_dir / "measurements.tsv")
    log.info("Selected %d TF measurements", len(measurements))
    result = {"activities": acts, "measurements": measurements}

    if sample_matrix is not None and groups is not None:
        by_sample = differential_tf_activity(
            sample_matrix, net, groups, test=test, reference=reference, tmin=tmin,
        )
        write_table(by_sample, output_dir / "tf_activity_by_sample.csv")
        log.info("Sample-level TF activity: %d TFs with FDR < 0.05",
                 int((by_sample["FDR"] < 0.05).sum()))
        result["by_sample"] = by_sample

    if plot:
        from .utils.plotting import plot_activity_bars, plot_activity_heatmap
        plot_activity_bars(
            acts, output_dir / "tf_activities.png",
            title="Top TF activities (CollecTRI, ULM)",
        )
        if "by_sample" in result:
            per_sample = ulm_activity(sample_matrix, net, tmin=tmin)
            top = result["by_sample"]["source"].head(30)
            plot_activity_heatmap(
                per_sample[per_sample["source"].isin(top)],
                output_dir / "tf_activity_samples.png",
                title=f"TF activity per sample ({test} vs {reference})",
                xlabel="Sample",
            )
    return result


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    from .differential_expression import contrast_name, de_statistic_matrix, load_de_results

    parser = argparse.ArgumentParser(
        description="Infer TF activities from DE statistics with decoupler/CollecTRI."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--de-file", required=True, help="DE results CSV (index = gene).")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--network", default=None,
                        help="Signed network TSV; restricts measurements to its nodes.")
    parser.add_argument("--collectri", default=None, help="Local CollecTRI table.")
    parser.add_argument("--organism", default="human")
    parser.add_argument("--tmin", type=int, default=5)
    parser.add_argument("--n-top", type=int, default=50)
    parser.add_argument("--padj-threshold", type=float, default=None)
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    tf_cfg = cfg.get("tf_activity", {})

    de = load_de_results(args.de_file)
    network = load_edges(args.network) if args.network else None

    run_tf_activity(
        stat_matrix=de_statistic_matrix(de, name=contrast_name(cfg)),
        output_dir=args.output_dir,
        organism=tf_cfg.get("organism", args.organism),
        collectri_path=args.collectri or cfg.get("paths", {}).get("collectri"),
        network=network,
        tmin=tf_cfg.get("tmin", args.tmin),
        n_top=tf_cfg.get("n_top", args.n_top),
        padj_threshold=tf_cfg.get("padj_threshold", args.padj_threshold),
        plot=args.plot,
    )


if __name__ == "__main__":
    main()
