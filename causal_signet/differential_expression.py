"""Differential expression with pyDESeq2.

Fits a negative-binomial GLM (design ~ condition) to filtered raw counts and
runs a Wald test for one contrast. The per-gene Wald statistic ('stat') is the
input to TF and pathway activity inference downstream; log2 fold changes and
adjusted p-values are kept for the volcano plot and DEG counts.

Usage:
    python -m causal_signet.differential_expression --config configs/default_config.yaml \\
        --counts results/preprocessing/counts_filtered.csv \\
        --samples data/samples.csv --test treated --reference control \\
        --output-dir results/differential_expression/
"""

import argparse
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .preprocessing import load_counts, load_samples, align_samples
from .utils.io import load_config, read_table, write_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

DE_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


# ── pyDESeq2 interface ────────────────────────────────────────────────────────

def run_deseq2(
    counts: pd.DataFrame,
    samples: pd.DataFrame,
    condition_col: str,
    test: str,
    reference: str,
    alpha: float = 0.05,
    n_cpus: int = 1,
) -> pd.DataFrame:
    """Run a DESeq2 Wald test of `test` vs `reference`.

    Args:
        counts: Genes × samples raw count matrix (already filtered).
        samples: Sample sheet indexed by sample ID.
        condition_col: Column in samples with the condition labels.
        test: Condition level in the numerator of the fold change.
        reference: Condition level in the denominator.
        alpha: Significance level used by independent filtering.
        n_cpus: CPU cores for dispersion and LFC fitting.

    Returns:
        DataFrame indexed by gene with columns baseMean, log2FoldChange,
        lfcSE, stat, pvalue, padj.

    Raises:
        ValueError: If either condition level is absent from the sample sheet.
    """
    from pydeseq2.dds import DeseqDataSet
    from pydeseq2.default_inference import DefaultInference
    from pydeseq2.ds import DeseqStats

    levels = set(samples[condition_col].astype(str))
    for level in (test, reference):
        if level not in levels:
            raise ValueError(f"Condition '{level}' not found in column '{condition_col}'")

    counts, samples = align_samples(counts, samples)
    metadata = samples[[condition_col]].astype(str)

    inference = DefaultInference(n_cpus=n_cpus)
    log.info("Running DESeq2 on %d genes × %d samples (%s vs %s)",
             counts.shape[0], counts.shape[1], test, reference)
    dds = DeseqDataSet(
        counts=counts.T,
        metadata=metadata,
        design=f"~{condition_col}",
        refit_cooks=True,
        inference=inference,
        quiet=True,
    )
    dds.deseq2()

    stat_res = DeseqStats(
        dds,
        contrast=[condition_col, test, reference],
        alpha=alpha,
        inference=inference,
        quiet=True,
    )
    stat_res.summary()

    results = stat_res.results_df[DE_COLUMNS].copy()
    results.index.name = "gene"
    return results


# ── Post-processing ───────────────────────────────────────────────────────────

def annotate_de_results(
    df: pd.DataFrame,
    padj_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
) -> pd.DataFrame:
    """Add a 'direction' column and drop genes without a test statistic.

    Genes with padj < padj_threshold and |log2FC| > lfc_threshold are 'up'
    or 'down'; everything else is 'ns'. Genes removed by Cook's distance
    filtering have no statistic and cannot be used for activity inference.

    Args:
        df: DESeq2 results indexed by gene.
        padj_threshold: Adjusted p-value cutoff.
        lfc_threshold: Absolute log2 fold change cutoff.

    Returns:
        Annotated copy of df, sorted by padj.
    """
    df = df.dropna(subset=["stat"]).copy()
    sig = df["padj"].fillna(1.0) < padj_threshold
    df["direction"] = np.select(
        [sig & (df["log2FoldChange"] > lfc_threshold),
         sig & (df["log2FoldChange"] < -lfc_threshold)],
        ["up", "down"],
        default="ns",
    )
    n_up = int((df["direction"] == "up").sum())
    n_down = int((df["direction"] == "down").sum())
    log.info("DE genes (padj<%.2g, |log2FC|>%.2g): %d up, %d down, %d tested",
             padj_threshold, lfc_threshold, n_up, n_down, len(df))
    return df.sort_values("padj", na_position="last")


def contrast_name(cfg: dict) -> str:
    """Name of the configured contrast, e.g. 'treated_vs_control'.

    Falls back to 'contrast' when the differential_expression section does
    not name both levels.
    """
    de_cfg = cfg.get("differential_expression", {})
    if de_cfg.get("test") and de_cfg.get("reference"):
        return f"{de_cfg['test']}_vs_{de_cfg['reference']}"
    return "contrast"


def de_statistic_matrix(
    de_results: pd.DataFrame,
    stat_col: str = "stat",
    name: str = "contrast",
) -> pd.DataFrame:
    """Reshape a DE table into a 1 × genes matrix for decoupler.

    Args:
        de_results: DE table indexed by gene.
        stat_col: Column used as the gene-level statistic.
        name: Row label for the contrast.

    Returns:
        DataFrame with a single row named `name` and one column per gene.
    """
    stats = de_results[stat_col].dropna()
    stats = stats[~stats.index.duplicated(keep="first")]
    return stats.to_frame(name=name).T.astype(float)


def load_de_results(path: str | Path) -> pd.DataFrame:
    """Load a DE table written by run_differential_expression().

    Raises:
        ValueError: If the 'stat' column is missing.
    """
    df = read_table(path, index_col=0)
    df.index = df.index.astype(str)
    if "stat" not in df.columns:
        raise ValueError(f"DE table {path} has no 'stat' column")
    return df


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_differential_expression(
    counts: pd.DataFrame,
    samples: pd.DataFrame,
    output_dir: str | Path,
    condition_col: str,
    test: str,
    reference: str,
    alpha: float = 0.05,
    lfc_threshold: float = 1.0,
    n_cpus: int = 1,
    plot: bool = False,
) -> pd.DataFrame:
    """Run DESeq2, annotate the results and save them.

    Returns:
        Annotated DE table indexed by gene.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results = run_deseq2(
        counts, samples, condition_col=condition_col,
        test=test, reference=reference, alpha=alpha, n_cpus=n_cpus,
    )
    results = annotate_de_results(results, padj_threshold=alpha, lfc_threshold=lfc_threshold)
    write_table(results, output_dir / "de_results.csv", index=True)
    log.info("DE results saved: %s", output_dir / "de_results.csv")

    if plot:
        from .utils.plotting import plot_volcano
        plot_volcano(
            results, output_dir / "volcano.png",
            padj_threshold=alpha, lfc_threshold=lfc_threshold,
            title=f"{test} vs {reference}",
        )
    return results


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Differential expression (pyDESeq2) for one contrast."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--counts", required=True, help="Filtered genes × samples count matrix.")
    parser.add_argument("--samples", required=True, help="Sample sheet (index = sample ID).")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--condition-col", default="condition")
    parser.add_argument("--test", default=None,
                        help="Condition in the numerator (default: differential_expression.test).")
    parser.add_argument("--reference", default=None,
                        help="Reference condition (default: differential_expression.reference).")
    parser.add_argument("--alpha", type=float, default=0.05)
    parser.add_argument("--lfc-threshold", type=float, default=1.0)
    parser.add_argument("--n-cpus", type=int, default=1)
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    de_cfg = cfg.get("differential_expression", {})
    condition_col = cfg.get("preprocessing", {}).get("condition_col", args.condition_col)
    test = args.test or de_cfg.get("test")
    reference = args.reference or de_cfg.get("reference")
    if not test or not reference:
        parser.error("--test and --reference are required when the config does not set them")

    run_differential_expression(
        counts=load_counts(args.counts),
        samples=load_samples(args.samples, condition_col=condition_col),
        output_dir=args.output_dir,
        condition_col=condition_col,
        test=test,
        reference=reference,
        alpha=de_cfg.get("alpha", args.alpha),
        lfc_threshold=de_cfg.get("lfc_threshold", args.lfc_threshold),
        n_cpus=de_cfg.get("n_cpus", args.n_cpus),
        plot=args.plot,
    )


if __name__ == "__main__":
    main()
