"""Signed prior-knowledge network extraction from a curated interaction database.

Turns a raw OmniPath-style interaction dump into a directed, signed edge list
that the causal network solver accepts as its prior-knowledge network (PKN).

Pipeline:
  1. Keep records whose consensus direction flag is set (one agreed-upon
     causal direction, not an ambiguous or bidirectional relationship).
  2. Keep records flagged as stimulation or inhibition.
  3. Derive two signs per record, one from each consensus flag:
       stimulation 1 → +1, stimulation 0 → −1
       inhibition  1 → −1, inhibition  0 → +1
  4. Keep a record only when both derived signs agree. Records asserting
     both stimulation and inhibition are contradictory and are dropped
     rather than resolved.
  5. Project to (source, sign, target), rewrite ':' in complex identifiers
     to '_' (the solver tokenizes node names on ':'), and collapse exact
     duplicate triples.

The same (source, target) pair can survive with both signs when different
records support opposite polarities; duplicates are collapsed per exact
triple, not per pair.

Usage:
    python -m causal_signet.signed_network --config configs/default_config.yaml \\
        --interactions data/omnipath_interactions.tsv \\
        --output results/network/signed_network.tsv
"""

import argparse
import logging
from io import StringIO
from pathlib import Path
from typing import Optional

import pandas as pd
import requests

from .utils.io import EDGE_COLUMNS, load_config, load_interactions, save_edges, write_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)

OMNIPATH_URL = "https://omnipathdb.org/interactions"
OMNIPATH_PARAMS = {
    "genesymbols": "yes",
    "fields": "curation_effort,references",
    "datasets": "omnipath",
}

DEFAULT_COLUMNS = {
    "source_col": "source_genesymbol",
    "target_col": "target_genesymbol",
    "direction_col": "consensus_direction",
    "stimulation_col": "consensus_stimulation",
    "inhibition_col": "consensus_inhibition",
}

_TRUE_STRINGS = {"1", "true", "t", "yes"}
_FALSE_STRINGS = {"0", "false", "f", "no"}


# ── Download ──────────────────────────────────────────────────────────────────

def fetch_omnipath_interactions(
    url: str = OMNIPATH_URL,
    params: Optional[dict] = None,
    timeout: int = 120,
) -> pd.DataFrame:
    """Download the interaction table from the OmniPath web service.

    Args:
        url: OmniPath interactions endpoint.
        params: Query parameters. Defaults to gene symbols for the core
            'omnipath' dataset.
        timeout: Request timeout in seconds.

    Returns:
        DataFrame with one row per interaction record, including the
        consensus_direction / consensus_stimulation / consensus_inhibition
        columns.

    Raises:
        requests.HTTPError: If the service answers with an error status.
    """
    params = OMNIPATH_PARAMS if params is None else params
    log.info("Fetching interactions from %s", url)
    response = requests.get(url, params=params, timeout=timeout)
    response.raise_for_status()
    df = pd.read_csv(
        StringIO(response.text), sep="\t",
        dtype={c: str for c in ("source", "target", "source_genesymbol", "target_genesymbol")},
    )
    log.info("Downloaded %d interaction records", len(df))
    return df


# ── Record normalization ──────────────────────────────────────────────────────

def _as_flag(values: pd.Series) -> pd.Series:
    """Coerce a boolean-like column to a nullable 0/1 integer column.

    Accepts booleans, numbers and the usual string spellings. Anything that
    is not clearly 0 or 1 becomes NA so the record is later dropped.
    """
    if values.dtype == bool:
        return values.astype("Int64")

    def convert(v):
        if isinstance(v, str):
            s = v.strip().lower()
            if s in _TRUE_STRINGS:
                return 1
            if s in _FALSE_STRINGS:
                return 0
            return pd.NA
        if pd.isna(v):
            return pd.NA
        if v == 1:
            return 1
        if v == 0:
            return 0
        return pd.NA

    return values.map(convert).astype("Int64")


def _as_identifier(values: pd.Series) -> pd.Series:
    """Coerce an identifier column to stripped text, blanks becoming NA.

    Integral floats (a numeric ID column that pandas widened to float because
    of a gap) are written back without the trailing '.0'.
    """
    def convert(v):
        if isinstance(v, str):
            return v.strip() or pd.NA
        if pd.isna(v):
            return pd.NA
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)

    return values.astype(object).map(convert)


def sign_from_flags(
    stimulation: pd.Series,
    inhibition: pd.Series,
) -> tuple[pd.Series, pd.Series]:
    """Derive the two candidate signs of each record from its consensus flags.

    Stimulation 1 → +1 and 0 → −1; inhibition 1 → −1 and 0 → +1. A record is
    sign-consistent when both derived values are equal.

    Args:
        stimulation: 0/1 stimulation consensus flags.
        inhibition: 0/1 inhibition consensus flags.

    Returns:
        Tuple (stimulation_sign, inhibition_sign) of integer Series.
    """
    stim_sign = stimulation.map({1: 1, 0: -1}).astype(int)
    inhib_sign = inhibition.map({1: -1, 0: 1}).astype(int)
    return stim_sign, inhib_sign


def normalize_identifier(
    ids: pd.Series,
    sep: str = ":",
    replacement: str = "_",
) -> pd.Series:
    """Rewrite the reserved separator inside entity identifiers.

    Complex identifiers such as 'COMPLEX:JUN_FOS' or 'NFKB1:RELA' would be
    split by consumers that tokenize on ':'.
    """
    return ids.astype(str).str.replace(sep, replacement, regex=False)


# ── Extraction ────────────────────────────────────────────────────────────────

def extract_signed_network(
    interactions: pd.DataFrame,
    source_col: str = DEFAULT_COLUMNS["source_col"],
    target_col: str = DEFAULT_COLUMNS["target_col"],
    direction_col: str = DEFAULT_COLUMNS["direction_col"],
    stimulation_col: str = DEFAULT_COLUMNS["stimulation_col"],
    inhibition_col: str = DEFAULT_COLUMNS["inhibition_col"],
) -> pd.DataFrame:
    """Build the deduplicated, sign-consistent directed edge list.

    Args:
        interactions: Raw interaction records.
        source_col: Column with source entity identifiers.
        target_col: Column with target entity identifiers.
        direction_col: Consensus directionality flag (0/1).
        stimulation_col: Consensus stimulation flag (0/1).
        inhibition_col: Consensus inhibition flag (0/1).

    Returns:
        DataFrame with columns ['source', 'interaction', 'target'], where
        'interaction' is the integer sign (+1 or −1). Rows are sorted by
        source, target and sign. An empty input yields an empty table with
        the same columns.

    Raises:
        ValueError: If any of the named columns is absent from the table.
    """
    cols = [source_col, target_col, direction_col, stimulation_col, inhibition_col]
    missing = [c for c in cols if c not in interactions.columns]
    if missing:
        raise ValueError(f"Interaction table missing columns: {missing}")

    df = pd.DataFrame({
        "source": _as_identifier(interactions[source_col]),
        "target": _as_identifier(interactions[target_col]),
        "direction": _as_flag(interactions[direction_col]),
        "stimulation": _as_flag(interactions[stimulation_col]),
        "inhibition": _as_flag(interactions[inhibition_col]),
    })
    n_input = len(df)

    # Unresolvable evidence: missing identifiers or flags
    df = df.dropna()
    n_complete = len(df)

    df = df[df["direction"] == 1]
    n_directed = len(df)

    df = df[(df["stimulation"] == 1) | (df["inhibition"] == 1)]
    n_active = len(df)

    stim_sign, inhib_sign = sign_from_flags(df["stimulation"], df["inhibition"])
    df = df.assign(interaction=stim_sign)[stim_sign == inhib_sign]
    n_consistent = len(df)

    edges = pd.DataFrame({
        "source": normalize_identifier(df["source"]),
        "interaction": df["interaction"].astype(int),
        "target": normalize_identifier(df["target"]),
    }, columns=EDGE_COLUMNS)
    edges = (
        edges.drop_duplicates()
        .sort_values(["source", "target", "interaction"])
        .reset_index(drop=True)
    )

    log.info(
        "Signed network: %d records → %d complete → %d directed → %d signed "
        "→ %d consistent → %d unique edges",
        n_input, n_complete, n_directed, n_active, n_consistent, len(edges),
    )
    if edges.empty:
        log.warning("No sign-consistent directed interactions retained.")
    return edges


def network_nodes(edges: pd.DataFrame) -> set:
    """Return every node that appears as a source or target in an edge table."""
    return set(edges["source"]) | set(edges["target"])


# ── Full pipeline ─────────────────────────────────────────────────────────────

def run_signed_network(
    output_path: str | Path,
    interactions_path: Optional[str | Path] = None,
    raw_output_path: Optional[str | Path] = None,
    url: str = OMNIPATH_URL,
    params: Optional[dict] = None,
    columns: Optional[dict] = None,
) -> pd.DataFrame:
    """Load (or download) interactions, extract the signed network, save it.

    Args:
        output_path: Destination TSV for the signed edge table.
        interactions_path: Local interaction dump. When None, the table is
            downloaded from OmniPath.
        raw_output_path: Optional path to keep a copy of the downloaded dump.
        url: OmniPath endpoint used when downloading.
        params: OmniPath query parameters.
        columns: Overrides for the column names (keys of DEFAULT_COLUMNS).

    Returns:
        The signed edge table.
    """
    colmap = {**DEFAULT_COLUMNS, **(columns or {})}

    if interactions_path is not None:
        raw = load_interactions(
            interactions_path,
            required=set(colmap.values()),
            text_cols=[colmap["source_col"], colmap["target_col"]],
        )
        log.info("Loaded %d interaction records from %s", len(raw), interactions_path)
    else:
        raw = fetch_omnipath_interactions(url=url, params=params)
        if raw_output_path is not None:
            write_table(raw, raw_output_path)
            log.info("Raw interactions saved: %s", raw_output_path)

    edges = extract_signed_network(raw, **colmap)
    save_edges(edges, output_path)
    log.info("Signed network saved: %s (%d edges, %d nodes)",
             output_path, len(edges), len(network_nodes(edges)))
    return edges


# ── CLI ───────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Extract a sign-consistent directed network from OmniPath interactions."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--interactions", default=None,
                        help="Local interaction table (CSV/TSV). Downloads from OmniPath if omitted.")
    parser.add_argument("--output", required=True, help="Output TSV for the signed network.")
    parser.add_argument("--raw-output", default=None,
                        help="Where to keep the downloaded interaction table.")
    parser.add_argument("--url", default=OMNIPATH_URL)
    parser.add_argument("--source-col", default=DEFAULT_COLUMNS["source_col"])
    parser.add_argument("--target-col", default=DEFAULT_COLUMNS["target_col"])
    args = parser.parse_args()

    cfg = load_config(args.config) if args.config else {}
    sn_cfg = cfg.get("signed_network", {})

    columns = dict(sn_cfg.get("columns", {}))
    columns.setdefault("source_col", args.source_col)
    columns.setdefault("target_col", args.target_col)

    run_signed_network(
        output_path=args.output,
        interactions_path=args.interactions or cfg.get("paths", {}).get("interactions"),
        raw_output_path=args.raw_output,
        url=sn_cfg.get("url", args.url),
        params=sn_cfg.get("params"),
        columns=columns,
    )


if __name__ == "__main__":
    main()
