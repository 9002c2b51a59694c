"""Causal network reconstruction with CARNIVAL.

CARNIVAL is an R package that solves an integer linear program to find the
smallest sign-consistent subnetwork of a prior-knowledge network (PKN)
connecting perturbed nodes to measured nodes. This module serves as the
Python interface: it writes the solver inputs, invokes the R script as a
subprocess, and loads the solution back as a NetworkX graph.

Solver inputs:
  - PKN: signed edge table (source, interaction, target) from
    signed_network.extract_signed_network().
  - Measurements: TF activity scores for the measured nodes.
  - Perturbations: initial nodes with a fixed sign. When empty, the solver
    runs in inverse mode and chooses the upstream nodes itself.
  - Weights: optional node weights (PROGENy pathway scores) that reward
    including or excluding nodes in the solution.

Usage:
    python -m causal_signet.causal_network --config configs/default_config.yaml \\
        --network results/network/signed_network.tsv \\
        --measurements results/tf_activity/measurements.tsv \\
        --weights results/pathway_scoring/node_weights.tsv \\
        --perturbation TNF=1 \\
        --output-dir results/causal_network/
"""

import argparse
import logging
import subprocess
from pathlib import Path
from typing import Optional

import networkx as nx
import numpy as np
import pandas as pd

from .utils.io import load_config, load_edges, read_table, save_edges, write_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

# Path to the R script, relative to the package
_DEFAULT_R_SCRIPT = Path(__file__).parent / "r" / "run_carnival.R"

SOLVERS = ("lpSolve", "cplex", "cbc")


# ── Input preparation ─────────────────────────────────────────────────────────

def prepare_measurements(
    measurements: pd.Series,
    network_nodes: Optional[set] = None,
) -> pd.DataFrame:
    """Tidy measured node scores into a (node, value) table.

    Args:
        measurements: Series mapping node → signed activity score.
        network_nodes: If given, nodes absent from the PKN are dropped.

    Returns:
        DataFrame with columns ['node', 'value'].

    Raises:
        ValueError: If no measurement remains.
    """
    df = measurements.dropna().rename("value").rename_axis("node").reset_index()
    if network_nodes is not None:
        df = df[df["node"].isin(network_nodes)]
    if df.empty:
        raise ValueError("No measured nodes are present in the prior-knowledge network.")
    return df.reset_index(drop=True)


def prepare_perturbations(
    perturbations: Optional[dict],
    network_nodes: Optional[set] = None,
) -> pd.DataFrame:
    """Tidy initial nodes into a (node, value) table of signs.

    Args:
        perturbations: Mapping node → sign (+1 / −1). None or empty selects
            inverse mode.
        network_nodes: If given, perturbed nodes must exist in the PKN.

    Returns:
        DataFrame with columns ['node', 'value'] (possibly empty).

    Raises:
        ValueError: If a sign is not ±1 or a node is missing from the PKN.
    """
    if not perturbations:
        return pd.DataFrame(columns=["node", "value"])

    df = pd.DataFrame(list(perturbations.items()), columns=["node", "value"])
    df["value"] = np.sign(pd.to_numeric(df["value"], errors="coerce"))
    bad = df[~df["value"].isin([1, -1])]
    if not bad.empty:
        raise ValueError(f"Perturbation signs must be +1 or -1: {bad['node'].tolist()}")
    if network_nodes is not None:
        missing = sorted(set(df["node"]) - network_nodes)
        if missing:
            raise ValueError(f"Perturbed nodes not in the network: {missing}")
    df["value"] = df["value"].astype(int)
    return df


def prepare_weights(
    weights: Optional[pd.Series],
    network_nodes: Optional[set] = None,
) -> pd.DataFrame:
    """Tidy node weights into a (node, value) table clipped to [-1, 1]."""
    if weights is None or weights.empty:
        return pd.DataFrame(columns=["node", "value"])
    df = weights.dropna().clip(-1, 1).rename("value").rename_axis("node").reset_index()
    if network_nodes is not None:
        df = df[df["node"].isin(network_nodes)]
    return df.reset_index(drop=True)


def write_carnival_inputs(
    network: pd.DataFrame,
    measurements: pd.DataFrame,
    perturbations: pd.DataFrame,
    weights: pd.DataFrame,
    input_dir: str | Path,
) -> dict[str, Path]:
    """Write the solver input tables as TSV files.

    Returns:
        Dict mapping input name → written path.
    """
    input_dir = Path(input_dir)
    input_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "network": input_dir / "network.tsv",
        "measurements": input_dir / "measurements.tsv",
        "perturbations": input_dir / "perturbations.tsv",
        "weights": input_dir / "weights.tsv",
    }
    save_edges(network, paths["network"])
    write_table(measurements, paths["measurements"])
    write_table(perturbations, paths["perturbations"])
    write_table(weights, paths["weights"])
    log.info("Solver inputs written to %s (%d edges, %d measurements, %d perturbations)",
             input_dir, len(network), len(measurements), len(perturbations))
    return paths


# ── R subprocess interface ────────────────────────────────────────────────────

def run_carnival_r(
    input_dir: str | Path,
    output_dir: str | Path,
    solver: str = "lpSolve",
    solver_path: Optional[str] = None,
    time_limit: int = 3600,
    threads: int = 1,
    rscript_path: str = "Rscript",
    r_script: str | Path = _DEFAULT_R_SCRIPT,
    timeout: int = 7200,
) -> str:
    """Invoke run_carnival.R as a subprocess.

    Args:
        input_dir: Directory produced by write_carnival_inputs().
        output_dir: Directory where the solution tables are written.
        solver: ILP backend ('lpSolve', 'cplex' or 'cbc').
        solver_path: Path to the solver binary (required for cplex/cbc).
        time_limit: Solver time limit in seconds.
        threads: Solver threads.
        rscript_path: Path to the Rscript binary.
        r_script: Path to run_carnival.R.
        timeout: Maximum wall time for the subprocess in seconds.

    Returns:
        Captured stdout from the R script.

    Raises:
        ValueError: If the solver is unknown or needs a binary path.
        RuntimeError: If the R script exits with a nonzero return code or
            times out.
    """
    if solver not in SOLVERS:
        raise ValueError(f"Unknown solver '{solver}'. Choose: {', '.join(SOLVERS)}.")
    if solver != "lpSolve" and not solver_path:
        raise ValueError(f"Solver '{solver}' requires solver_path.")

    cmd = [
        str(rscript_path),
        str(r_script),
        "--input-dir", str(input_dir),
        "--output-dir", str(output_dir),
        "--solver", solver,
        "--time-limit", str(time_limit),
        "--threads", str(threads),
    ]
    if solver_path:
        cmd += ["--solver-path", str(solver_path)]
    log.info("Launching R: %s", " ".join(cmd))
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        raise RuntimeError(f"run_carnival.R timed out after {timeout}s.")

    if proc.returncode != 0:
        log.error("R stderr:\n%s", stderr)
        raise RuntimeError(
            f"run_carnival.R exited with code {proc.returncode}. "
            "See stderr above for details."
        )
    log.info("CARNIVAL completed successfully.")
    return stdout


# ── Post-processing ───────────────────────────────────────────────────────────

def load_carnival_result(output_dir: str | Path) -> dict[str, pd.DataFrame]:
    """Read the solution tables written by run_carnival.R.

    Expects output_dir/weighted_sif.tsv (Node1, Sign, Node2, Weight) and
    output_dir/node_attributes.tsv (Node, AvgAct, ...).

    Returns:
        Dict with 'edges' (columns source, sign, target, weight) and
        'nodes' (columns node, activity plus any extra solver columns).

    Raises:
        FileNotFoundError: If the edge table is missing.
    """
    output_dir = Path(output_dir)
    sif_path = output_dir / "weighted_sif.tsv"
    if not sif_path.exists():
        raise FileNotFoundError(
            f"No solution found at {sif_path}. Did the R script complete successfully?"
        )
    edges = read_table(sif_path).rename(columns={
        "Node1": "source", "Sign": "sign", "Node2": "target", "Weight": "weight",
    })
    edges["sign"] = edges["sign"].astype(int)

    nodes_path = output_dir / "node_attributes.tsv"
    if nodes_path.exists():
        nodes = read_table(nodes_path).rename(columns={"Node": "node", "AvgAct": "activity"})
    else:
        log.warning("Missing node attribute file: %s", nodes_path)
        nodes = pd.DataFrame(columns=["node", "activity"])

    log.info("Solution: %d edges, %d nodes", len(edges), len(nodes))
    return {"edges": edges, "nodes": nodes}


def build_causal_graph(
    edges: pd.DataFrame,
    nodes: Optional[pd.DataFrame] = None,
    min_weight: float = 0.0,
) -> nx.DiGraph:
    """Build a directed graph from the solver's weighted edges.

    Edge weights are the percentage of equivalent optimal solutions that
    contain the edge. Nodes carry the solver's average activity when node
    attributes are given.

    Args:
        edges: DataFrame with columns source, sign, target, weight.
        nodes: Optional DataFrame with columns node, activity.
        min_weight: Minimum edge weight to keep.

    Returns:
        Directed NetworkX graph with 'sign' and 'weight' edge attributes and
        an 'activity' node attribute.
    """
    G = nx.DiGraph()
    kept = edges[edges["weight"] > min_weight] if "weight" in edges else edges
    for row in kept.itertuples(index=False):
        G.add_edge(row.source, row.target, sign=int(row.sign),
                   weight=float(getattr(row, "weight", 100.0)))

    activity = {}
    if nodes is not None and not nodes.empty:
        activity = dict(zip(nodes["node"], nodes["activity"]))
    for node in G.nodes():
        G.nodes[node]["activity"] = float(activity.get(node, 0.0))
    return G


def compute_node_centrality(G: nx.DiGraph) -> pd.DataFrame:
    """Compute degree and betweenness centrality for every node.

    Betweenness highlights signaling bottlenecks relaying the perturbation
    to several measured TFs.

    Returns:
        DataFrame with columns ['node', 'in_degree', 'out_degree', 'degree',
        'betweenness', 'activity'] sorted by betweenness.
    """
    if G.number_of_nodes() == 0:
        return pd.DataFrame(columns=["node", "in_degree", "out_degree",
                                     "degree", "betweenness", "activity"])
    deg = nx.degree_centrality(G)
    btwn = nx.betweenness_centrality(G)
    nodes = list(G.nodes())
    return (
        pd.DataFrame({
            "node": nodes,
            "in_degree": [G.in_degree(n) for n in nodes],
            "out_degree": [G.out_degree(n) for n in nodes],
            "degree": [deg[n] for n in nodes],
            "betweenness": [btwn[n] for n in nodes],
            "activity": [G.nodes[n].get("activity", 0.0) for n in nodes],
        })
        .sort_values(["betweenness", "node"], ascending=[False, True])
        .reset_index(drop=True)
    )


def summarize_sign_agreement(G: nx.DiGraph, measurements: pd.Series) -> dict:
    """Check how well the solution reproduces the measured activity signs.

    Returns:
        Dict with 'n_measured', 'n_in_solution', 'n_agree' and
        'fraction_agree' (NaN when no measured node is in the solution).
    """
    in_solution = [n for n in measurements.index if n in G]
    agree = [
        n for n in in_solution
        if np.sign(G.nodes[n].get("activity", 0.0)) == np.sign(measurements[n])
    ]
    return {
        "n_measured": int(len(measurements)),
        "n_in_solution": len(in_solution),
        "n_agree": len(agree),
        "fraction_agree": len(agree) / len(in_solution) if in_solution else float("nan"),
    }


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_causal_network(
    network: pd.DataFrame,
    measurements: pd.Series,
    output_dir: str | Path,
    perturbations: Optional[dict] = None,
    weights: Optional[pd.Series] = None,
    solver: str = "lpSolve",
    solver_path: Optional[str] = None,
    time_limit: int = 3600,
    threads: int = 1,
    min_edge_weight: float = 0.0,
    rscript_path: str = "Rscript",
    r_script: str | Path = _DEFAULT_R_SCRIPT,
    plot: bool = False,
) -> dict:
    """Prepare inputs, run CARNIVAL and summarize the causal subnetwork.

    Returns:
        Dict with keys 'graph' (nx.DiGraph), 'edges', 'nodes', 'centrality'
        (DataFrames) and 'agreement' (dict).
    """
    output_dir = Path(output_dir)
    nodes = set(network["source"]) | set(network["target"])

    meas_df = prepare_measurements(measurements, network_nodes=nodes)
    pert_df = prepare_perturbations(perturbations, network_nodes=nodes)
    weight_df = prepare_weights(weights, network_nodes=nodes)
    if pert_df.empty:
        log.info("No perturbations given: running inverse CARNIVAL.")

    input_dir = output_dir / "inputs"
    solution_dir = output_dir / "solution"
    write_carnival_inputs(network, meas_df, pert_df, weight_df, input_dir)
    run_carnival_r(
        input_dir, solution_dir,
        solver=solver, solver_path=solver_path, time_limit=time_limit,
        threads=threads, rscript_path=rscript_path, r_script=r_script,
    )

    result = load_carnival_result(solution_dir)
    G = build_causal_graph(result["edges"], result["nodes"], min_weight=min_edge_weight)
    centrality = compute_node_centrality(G)
    centrality.to_csv(output_dir / "centrality.csv", index=False)

    agreement = summarize_sign_agreement(G, meas_df.set_index("node")["value"])
    log.info("Measured nodes in solution: %d / %d, sign agreement %d",
             agreement["n_in_solution"], agreement["n_measured"], agreement["n_agree"])

    if plot:
        from .utils.plotting import plot_causal_network
        plot_causal_network(G, output_dir / "causal_network.png",
                            measured=set(meas_df["node"]),
                            perturbed=set(pert_df["node"]))

    return {
        "graph": G,
        "edges": result["edges"],
        "nodes": result["nodes"],
        "centrality": centrality,
        "agreement": agreement,
    }


def parse_perturbations(items: Optional[list[str]]) -> dict:
    """Parse NODE=SIGN command-line items into a dict."""
    if not items:
        return {}
    out = {}
    for item in items:
        node, _, sign = item.partition("=")
        out[node] = int(sign) if sign else 1
    return out


def load_node_values(path: str | Path, value_col: Optional[str] = None) -> pd.Series:
    """Load a two-column (node, value) table as a Series."""
    df = read_table(path)
    value_col = value_col or df.columns[1]
    return df.set_index(df.columns[0])[value_col].astype(float)


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Reconstruct a causal signaling network with CARNIVAL (R)."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--network", required=True, help="Signed network TSV.")
    parser.add_argument("--measurements", required=True, help="Measured nodes TSV (node, score).")
    parser.add_argument("--weights", default=None, help="Node weights TSV (node, weight).")
    parser.add_argument("--perturbation", nargs="*", metavar="NODE=SIGN",
                        help="Initial nodes, e.g. TNF=1 EGFR=-1. Omit for inverse mode.")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--solver", default="lpSolve", choices=SOLVERS)
    parser.add_argument("--solver-path", default=None)
    parser.add_argument("--time-limit", type=int, default=3600)
    parser.add_argument("--threads", type=int, default=1)
    parser.add_argument("--min-edge-weight", type=float, default=0.0)
    parser.add_argument("--rscript-path", default="Rscript")
    parser.add_argument("--r-script", default=str(_DEFAULT_R_SCRIPT))
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    cn_cfg = cfg.get("causal_network", {})

    run_causal_network(
        network=load_edges(args.network),
        measurements=load_node_values(args.measurements),
        output_dir=args.output_dir,
        perturbations=cn_cfg.get("perturbations", parse_perturbations(args.perturbation)),
        weights=load_node_values(args.weights) if args.weights else None,
        solver=cn_cfg.get("solver", args.solver),
        solver_path=cn_cfg.get("solver_path", args.solver_path),
        time_limit=cn_cfg.get("time_limit", args.time_limit),
        threads=cn_cfg.get("threads", args.threads),
        min_edge_weight=cn_cfg.get("min_edge_weight", args.min_edge_weight),
        rscript_path=args.rscript_path,
        r_script=args.r_script,
        plot=args.plot,
    )


if __name__ == "__main__":
    main()
