"""Pathway activity scoring: PROGENy footprints and preranked GSEA.

Two complementary views of the same contrast:
  1. PROGENy: 14 signaling pathways scored with decoupler's ULM on the DE
     Wald statistics, using PROGENy's consensus response genes (footprints)
     as weighted targets. These scores also become node weights for the
     causal network solver, by mapping each pathway to a representative
     signaling protein.
  2. Preranked GSEA (gseapy) of the same statistic against a gene set
     collection such as MSigDB Hallmark.

Usage:
    python -m causal_signet.pathway_scoring --config configs/default_config.yaml \\
        --de-file results/differential_expression/de_results.csv \\
        --gene-sets MSigDB_Hallmark_2020 \\
        --output-dir results/pathway_scoring/
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

import decoupler as dc
import gseapy as gp
import pandas as pd

from .tf_activity import ulm_activity
from .utils.io import load_config, read_table, write_table
from .utils.stats import scale_to_unit

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

# Representative protein per PROGENy pathway, used to place pathway scores
# on nodes of the signaling network.
PATHWAY_NODES = {
    "Androgen": "AR",
    "EGFR": "EGFR",
    "Estrogen": "ESR1",
    "Hypoxia": "HIF1A",
    "JAK-STAT": "STAT3",
    "MAPK": "MAPK3",
    "NFkB": "NFKB1",
    "p53": "TP53",
    "PI3K": "PIK3CA",
    "TGFb": "TGFB1",
    "TNFa": "TNF",
    "Trail": "TNFSF10",
    "VEGF": "VEGFA",
    "WNT": "CTNNB1",
}


# ── PROGENy ───────────────────────────────────────────────────────────────────

def load_progeny(
    organism: str = "human",
    top: int = 500,
    path: Optional[str | Path] = None,
) -> pd.DataFrame:
    """Load PROGENy pathway footprints.

    Args:
        organism: Organism name passed to decoupler.
        top: Number of top responsive genes per pathway.
        path: Optional local copy (CSV/TSV with source, target, weight).

    Returns:
        DataFrame with columns ['source', 'target', 'weight'].
    """
    if path is not None:
        net = read_table(path)
    else:
        log.info("Downloading PROGENy footprints (%s, top=%d)", organism, top)
        net = dc.op.progeny(organism=organism, top=top)
    return net[["source", "target", "weight"]]


def score_pathways(
    stat_matrix: pd.DataFrame,
    net: pd.DataFrame,
    tmin: int = 5,
) -> pd.DataFrame:
    """Score PROGENy pathways for each contrast with ULM.

    Returns:
        Long-format activity table (see tf_activity.ulm_activity()).
    """
    acts = ulm_activity(stat_matrix, net, tmin=tmin)
    log.info("PROGENy: %d pathways scored", acts["source"].nunique())
    return acts


def pathway_node_weights(
    activities: pd.DataFrame,
    pathway_nodes: Optional[dict] = None,
    network_nodes: Optional[set] = None,
    contrast: Optional[str] = None,
) -> pd.Series:
    """Turn pathway scores into node weights for the causal network solver.

    Each pathway score is assigned to its representative node and scaled to
    [-1, 1] by the largest |score|. Pathways without a mapping, or whose node
    is absent from the network, are skipped.

    Args:
        activities: Long-format PROGENy activity table.
        pathway_nodes: Mapping pathway → node. Defaults to PATHWAY_NODES.
        network_nodes: Optional node names of the signed network.
        contrast: Contrast to use. Defaults to the first one.

    Returns:
        Series mapping node → weight.
    """
    if activities.empty:
        return pd.Series(dtype=float, name="weight")

    pathway_nodes = PATHWAY_NODES if pathway_nodes is None else pathway_nodes
    contrast = contrast if contrast is not None else activities["contrast"].iloc[0]
    scores = activities.loc[activities["contrast"] == contrast].set_index("source")["score"]
    scores = scale_to_unit(scores)

    weights = {}
    for pathway, score in scores.items():
        node = pathway_nodes.get(pathway)
        if node is None:
            continue
        if network_nodes is not None and node not in network_nodes:
            log.info("Pathway node %s (%s) not in network; skipped", node, pathway)
            continue
        weights[node] = float(score)

    weights = pd.Series(weights, dtype=float, name="weight")
    weights.index.name = "node"
    return weights.sort_index()


# ── Preranked GSEA ────────────────────────────────────────────────────────────

def run_gsea_prerank(
    de_results: pd.DataFrame,
    gene_sets: str,
    stat_col: str = "stat",
    min_size: int = 15,
    max_size: int = 500,
    permutation_num: int = 1000,
    seed: int = 42,
    threads: int = 1,
) -> pd.DataFrame:
    """Run preranked GSEA on a DE statistic with gseapy.

    Args:
        de_results: DE table indexed by gene.
        gene_sets: GMT path or gseapy/Enrichr library name.
        stat_col: Column used for ranking.
        min_size: Minimum gene set size after overlap with the ranking.
        max_size: Maximum gene set size.
        permutation_num: Number of gene-set permutations.
        seed: Random seed.
        threads: Worker processes.

    Returns:
        gseapy result table (Term, ES, NES, NOM p-val, FDR q-val, ...)
        sorted by NES.
    """
    ranking = (
        de_results[stat_col].dropna()
        .groupby(level=0).mean()
        .sort_values(ascending=False)
    )
    log.info("Preranked GSEA on %d genes against %s", len(ranking), gene_sets)
    pre = gp.prerank(
        rnk=ranking,
        gene_sets=gene_sets,
        min_size=min_size,
        max_size=max_size,
        permutation_num=permutation_num,
        seed=seed,
        threads=threads,
        outdir=None,
        verbose=False,
    )
    res = pre.res2d.copy()
    res["NES"] = pd.to_numeric(res["NES"], errors="coerce")
    return res.sort_values("NES", ascending=False).reset_index(drop=True)


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_pathway_scoring(
    stat_matrix: pd.DataFrame,
    output_dir: str | Path,
    de_results: Optional[pd.DataFrame] = None,
    organism: str = "human",
    progeny_top: int = 500,
    progeny_path: Optional[str | Path] = None,
    gene_sets: Optional[str] = None,
    pathway_nodes: Optional[dict] = None,
    network_nodes: Optional[set] = None,
    tmin: int = 5,
    plot: bool = False,
) -> dict:
    """Score PROGENy pathways, derive node weights, and optionally run GSEA.

    Returns:
        Dict with keys 'progeny' (long DataFrame), 'weights' (Series) and,
        when gene_sets is given, 'gsea' (DataFrame).
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    net = load_progeny(organism=organism, top=progeny_top, path=progeny_path)
    progeny = score_pathways(stat_matrix, net, tmin=tmin)
    write_table(progeny, output_dir / "progeny_activities.csv")

    weights = pathway_node_weights(progeny, pathway_nodes, network_nodes=network_nodes)
    write_table(weights.reset_index(), output_dir / "node_weights.tsv")
    log.info("Node weights saved: %d nodes", len(weights))

    result = {"progeny": progeny, "weights": weights}

    if gene_sets and de_results is not None:
        gsea = run_gsea_prerank(de_results, gene_sets)
        write_table(gsea, output_dir / "gsea_prerank.csv")
        log.info("GSEA: %d gene sets tested", len(gsea))
        result["gsea"] = gsea

    if plot:
        from .utils.plotting import plot_activity_bars
        plot_activity_bars(
            progeny, output_dir / "progeny_activities.png",
            top_n=len(net["source"].unique()), title="PROGENy pathway activities",
        )
    return result


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    from .differential_expression import contrast_name, de_statistic_matrix, load_de_results

    parser = argparse.ArgumentParser(
        description="Score PROGENy pathways and run preranked GSEA on DE statistics."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--de-file", required=True, help="DE results CSV (index = gene).")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--gene-sets", default=None,
                        help="GMT file or gseapy library name for preranked GSEA.")
    parser.add_argument("--progeny", default=None, help="Local PROGENy table.")
    parser.add_argument("--organism", default="human")
    parser.add_argument("--progeny-top", type=int, default=500)
    parser.add_argument("--tmin", type=int, default=5)
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    ps_cfg = cfg.get("pathway_scoring", {})

    de = load_de_results(args.de_file)
    run_pathway_scoring(
        stat_matrix=de_statistic_matrix(de, name=contrast_name(cfg)),
        output_dir=args.output_dir,
        de_results=de,
        organism=ps_cfg.get("organism", args.organism),
        progeny_top=ps_cfg.get("progeny_top", args.progeny_top),
        progeny_path=args.progeny or cfg.get("paths", {}).get("progeny"),
        gene_sets=ps_cfg.get("gene_sets", args.gene_sets),
        pathway_nodes=ps_cfg.get("pathway_nodes"),
        tmin=ps_cfg.get("tmin", args.tmin),
        plot=args.plot,
    )


if __name__ == "__main__":
    main()
