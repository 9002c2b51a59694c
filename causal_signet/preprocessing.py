"""Bulk RNA-seq count preprocessing.

Loads a raw count matrix and a sample sheet, aligns them, removes lowly
expressed genes, and produces log2-CPM values for exploratory plots. The
filtered raw counts are what the differential expression step consumes;
pyDESeq2 does its own size-factor normalization.

Usage:
    python -m causal_signet.preprocessing --config configs/default_config.yaml \\
        --counts data/counts.csv --samples data/samples.csv \\
        --output-dir results/preprocessing/
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .utils.io import load_config, read_table, write_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)


# ── Loading ───────────────────────────────────────────────────────────────────

def load_counts(path: str | Path) -> pd.DataFrame:
    """Load a genes × samples count matrix.

    The first column is taken as the gene identifier. Duplicate gene rows
    (e.g. several Ensembl IDs mapping to one symbol) are summed.

    Args:
        path: CSV/TSV with genes as rows and samples as columns.

    Returns:
        Integer count DataFrame indexed by gene.
    """
    df = read_table(path, index_col=0)
    df.index = df.index.astype(str)
    df = df.apply(pd.to_numeric, errors="coerce").fillna(0)
    if df.index.duplicated().any():
        n_dup = int(df.index.duplicated().sum())
        log.info("Summing %d duplicated gene rows", n_dup)
        df = df.groupby(level=0).sum()
    return df.round().astype(int)


def load_samples(path: str | Path, condition_col: str = "condition") -> pd.DataFrame:
    """Load a sample sheet indexed by sample ID.

    Raises:
        ValueError: If the condition column is missing.
    """
    df = read_table(path, index_col=0)
    df.index = df.index.astype(str)
    if condition_col not in df.columns:
        raise ValueError(f"Sample sheet missing condition column '{condition_col}'")
    return df


def align_samples(
    counts: pd.DataFrame,
    samples: pd.DataFrame,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Restrict counts and sample sheet to shared samples, in sheet order.

    Raises:
        ValueError: If no sample is shared between the two tables.
    """
    shared = [s for s in samples.index if s in counts.columns]
    if not shared:
        raise ValueError("No samples shared between the count matrix and the sample sheet.")
    dropped = set(counts.columns) ^ set(samples.index)
    if dropped:
        log.warning("Dropping %d unmatched samples: %s", len(dropped), sorted(dropped))
    return counts[shared], samples.loc[shared]


# ── Filtering and normalization ───────────────────────────────────────────────

def filter_low_counts(
    counts: pd.DataFrame,
    min_count: int = 10,
    min_samples: Optional[int] = None,
    groups: Optional[pd.Series] = None,
) -> pd.DataFrame:
    """Remove genes without enough reads in enough samples.

    A gene is kept when at least min_samples samples have ≥ min_count reads.
    When min_samples is not given it defaults to the size of the smallest
    group in `groups` (so a gene expressed in only one condition survives),
    or 1 without groups.

    Args:
        counts: Genes × samples count matrix.
        min_count: Minimum read count per sample.
        min_samples: Minimum number of samples passing min_count.
        groups: Optional Series mapping sample → condition.

    Returns:
        Filtered count matrix.
    """
    if min_samples is None:
        min_samples = int(groups.value_counts().min()) if groups is not None else 1
    keep = (counts >= min_count).sum(axis=1) >= min_samples
    log.info("Low-count filter: kept %d / %d genes (≥%d reads in ≥%d samples)",
             int(keep.sum()), len(counts), min_count, min_samples)
    return counts.loc[keep]


def normalize_log_cpm(counts: pd.DataFrame, prior_count: float = 1.0) -> pd.DataFrame:
    """Convert raw counts to log2 counts-per-million.

    Args:
        counts: Genes × samples count matrix.
        prior_count: Pseudocount added before taking the log.

    Returns:
        log2(CPM + prior_count) matrix with the same shape.
    """
    lib_size = counts.sum(axis=0).replace(0, np.nan)
    cpm = counts.div(lib_size, axis=1) * 1e6
    return np.log2(cpm.fillna(0.0) + prior_count)


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_preprocessing(
    counts_path: str | Path,
    samples_path: str | Path,
    output_dir: str | Path,
    condition_col: str = "condition",
    min_count: int = 10,
    min_samples: Optional[int] = None,
) -> dict:
    """Load, align, filter and normalize a count matrix.

    Returns:
        Dict with keys 'counts' (filtered raw counts), 'samples' (aligned
        sample sheet) and 'log_cpm'.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    counts = load_counts(counts_path)
    samples = load_samples(samples_path, condition_col=condition_col)
    counts, samples = align_samples(counts, samples)

    counts = filter_low_counts(
        counts, min_count=min_count, min_samples=min_samples,
        groups=samples[condition_col],
    )
    log_cpm = normalize_log_cpm(counts)

    write_table(counts, output_dir / "counts_filtered.csv", index=True)
    write_table(log_cpm, output_dir / "log_cpm.csv", index=True)
    log.info("Preprocessed counts saved: %d genes × %d samples", *counts.shape)
    return {"counts": counts, "samples": samples, "log_cpm": log_cpm}


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Filter and normalize a bulk RNA-seq count matrix."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--counts", required=True, help="Genes × samples count matrix.")
    parser.add_argument("--samples", required=True, help="Sample sheet (index = sample ID).")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--condition-col", default="condition")
    parser.add_argument("--min-count", type=int, default=10)
    parser.add_argument("--min-samples", type=int, default=None)
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    pp_cfg = cfg.get("preprocessing", {})

    run_preprocessing(
        counts_path=args.counts,
        samples_path=args.samples,
        output_dir=args.output_dir,
        condition_col=pp_cfg.get("condition_col", args.condition_col),
        min_count=pp_cfg.get("min_count", args.min_count),
        min_samples=pp_cfg.get("min_samples", args.min_samples),
    )


if __name__ == "__main__":
    main()
