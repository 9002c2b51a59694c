"""Shared visualization functions used across analysis modules.

All plot functions accept an output_path argument and save to disk.
Figures are closed after saving; nothing is shown interactively.
"""

from pathlib import Path
from typing import Optional
import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import networkx as nx
import seaborn as sns
from adjustText import adjust_text
from scipy.cluster.hierarchy import dendrogram, linkage


def _save(fig, output_path: str | Path) -> None:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    fig.savefig(output_path.with_suffix(".svg"), bbox_inches="tight")
    plt.close(fig)


def plot_volcano(
    de_results: pd.DataFrame,
    output_path: str | Path,
    padj_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
    n_labels: int = 15,
    title: str = "",
    figsize: tuple = (8, 7),
) -> None:
    """Volcano plot of log2 fold change against −log10 adjusted p-value.

    Genes passing both thresholds are colored by direction; the n_labels
    most significant of them are labeled.

    Args:
        de_results: DE table indexed by gene with 'log2FoldChange' and 'padj'.
        output_path: Path to save the figure (PNG and SVG).
        padj_threshold: Adjusted p-value cutoff (horizontal guide).
        lfc_threshold: |log2FC| cutoff (vertical guides).
        n_labels: Number of top genes to label.
        title: Figure title.
        figsize: Figure width × height in inches.
    """
    df = de_results.dropna(subset=["log2FoldChange", "padj"]).copy()
    if df.empty:
        return
    df["neg_log10_padj"] = -np.log10(df["padj"].clip(lower=np.finfo(float).tiny))
    sig = (df["padj"] < padj_threshold) & (df["log2FoldChange"].abs() > lfc_threshold)
    colors = np.where(~sig, "lightgrey",
                      np.where(df["log2FoldChange"] > 0, "firebrick", "steelblue"))

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(df["log2FoldChange"], df["neg_log10_padj"], c=colors, s=8, alpha=0.8,
               linewidths=0)
    ax.axhline(-np.log10(padj_threshold), color="grey", linestyle="--", linewidth=0.8)
    for x in (-lfc_threshold, lfc_threshold):
        ax.axvline(x, color="grey", linestyle="--", linewidth=0.8)

    top = df[sig].nsmallest(n_labels, "padj")
    texts = [
        ax.text(row["log2FoldChange"], row["neg_log10_padj"], str(gene), fontsize=8)
        for gene, row in top.iterrows()
    ]
    if texts:
        adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle="-", color="lightgrey"))

    ax.set_xlabel("log2 fold change")
    ax.set_ylabel("−log10 adjusted p-value")
    ax.set_title(title)
    plt.tight_layout()
    _save(fig, output_path)


def plot_activity_bars(
    activities: pd.DataFrame,
    output_path: str | Path,
    top_n: int = 20,
    contrast: Optional[str] = None,
    title: str = "",
    figsize: tuple = (7, 8),
) -> None:
    """Horizontal barplot of the top activity scores of one contrast.

    Args:
        activities: Long-format table with 'contrast', 'source', 'score'.
        output_path: Path to save the figure.
        top_n: Number of sources with the largest |score| to show.
        contrast: Contrast to plot. Defaults to the first one.
        title: Figure title.
        figsize: Figure dimensions.
    """
    if activities.empty:
        return
    contrast = contrast if contrast is not None else activities["contrast"].iloc[0]
    df = activities[activities["contrast"] == contrast]
    df = df.reindex(df["score"].abs().sort_values(ascending=False).index).head(top_n)
    df = df.sort_values("score")

    fig, ax = plt.subplots(figsize=figsize)
    colors = ["firebrick" if s > 0 else "steelblue" for s in df["score"]]
    ax.barh(df["source"], df["score"], color=colors, alpha=0.85)
    ax.axvline(0, color="black", linewidth=0.6)
    ax.set_xlabel("Activity score")
    ax.set_ylabel("")
    ax.set_title(title)
    plt.tight_layout()
    _save(fig, output_path)


def plot_activity_heatmap(
    activities: pd.DataFrame,
    output_path: str | Path,
    cmap: str = "vlag",
    title: str = "",
    xlabel: str = "Contrast",
    figsize: tuple = (8, 10),
) -> None:
    """Heatmap of activity scores (sources × contrasts or samples), Ward-ordered rows.

    Args:
        activities: Long-format table with 'contrast', 'source', 'score'.
        output_path: Path to save the figure.
        cmap: Diverging colormap name.
        title: Figure title.
        xlabel: Label for the column axis.
        figsize: Figure dimensions.
    """
    if activities.empty:
        return
    mat = activities.pivot_table(index="source", columns="contrast",
                                 values="score", fill_value=0.0)
    if mat.empty:
        return
    if mat.shape[0] > 1:
        order = dendrogram(linkage(mat.values, method="ward"), no_plot=True)["leaves"]
        mat = mat.iloc[order]

    vmax = float(np.nanmax(np.abs(mat.values))) or 1.0
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(mat, ax=ax, cmap=cmap, center=0, vmin=-vmax, vmax=vmax,
                cbar_kws={"shrink": 0.5, "label": "score"})
    ax.set_title(title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel("")
    plt.tight_layout()
    _save(fig, output_path)


def plot_causal_network(
    G: nx.DiGraph,
    output_path: str | Path,
    measured: Optional[set] = None,
    perturbed: Optional[set] = None,
    figsize: tuple = (12, 10),
    seed: int = 42,
) -> None:
    """Draw a signed causal network.

    Node color encodes inferred activity (red up, blue down); measured nodes
    get a thick black border and perturbed nodes a square marker. Solid
    edges are activations, dashed edges inhibitions.

    Args:
        G: Graph from causal_network.build_causal_graph().
        output_path: Path to save the figure.
        measured: Measured node names.
        perturbed: Perturbed node names.
        figsize: Figure dimensions.
        seed: Layout seed.
    """
    if G.number_of_nodes() == 0:
        return
    measured = measured or set()
    perturbed = perturbed or set()
    pos = nx.spring_layout(G, seed=seed)

    fig, ax = plt.subplots(figsize=figsize)
    activity = np.array([G.nodes[n].get("activity", 0.0) for n in G.nodes()])
    vmax = float(np.abs(activity).max()) or 1.0
    for shape, members in (("s", perturbed), ("o", set(G.nodes()) - perturbed)):
        nodelist = [n for n in G.nodes() if n in members]
        if not nodelist:
            continue
        nx.draw_networkx_nodes(
            G, pos, nodelist=nodelist, node_shape=shape, ax=ax,
            node_color=[G.nodes[n].get("activity", 0.0) for n in nodelist],
            cmap="coolwarm", vmin=-vmax, vmax=vmax, node_size=500,
            edgecolors=["black" if n in measured else "grey" for n in nodelist],
            linewidths=[2.0 if n in measured else 0.5 for n in nodelist],
        )
    for sign, style in ((1, "solid"), (-1, "dashed")):
        nx.draw_networkx_edges(
            G, pos, ax=ax, style=style, arrows=True,
            edgelist=[(u, v) for u, v, d in G.edges(data=True) if d.get("sign") == sign],
        )
    nx.draw_networkx_labels(G, pos, ax=ax, font_size=8)
    ax.set_axis_off()
    plt.tight_layout()
    _save(fig, output_path)
