"""Shared fixtures: small OmniPath-like interaction tables and activity tables."""

import pandas as pd
import pytest


def make_interactions(rows) -> pd.DataFrame:
    """Build an OmniPath-style table from (source, target, dir, stim, inhib) tuples."""
    return pd.DataFrame(rows, columns=[
        "source_genesymbol", "target_genesymbol",
        "consensus_direction", "consensus_stimulation", "consensus_inhibition",
    ])


@pytest.fixture
def interactions() -> pd.DataFrame:
    return make_interactions([
        ("EGFR", "KRAS", 1, 1, 0),          # activation
        ("EGFR", "KRAS", 1, 1, 0),          # duplicate evidence
        ("PTEN", "AKT1", 1, 0, 1),          # inhibition
        ("TNF", "NFKB1", 0, 1, 0),          # undirected consensus
        ("SRC", "STAT3", 1, 0, 0),          # no polarity
        ("MDM2", "TP53", 1, 1, 1),          # contradictory
        ("NFKB1:RELA", "TNF", 1, 1, 0),     # complex identifier
        ("JAK1", "STAT3", 1, 1, 0),
    ])


@pytest.fixture
def tf_activities() -> pd.DataFrame:
    return pd.DataFrame({
        "contrast": ["treated_vs_control"] * 5,
        "source": ["STAT3", "NFKB1", "TP53", "MYC", "SP1"],
        "score": [5.2, -4.1, 3.0, -0.5, 1.2],
        "padj": [0.001, 0.004, 0.02, 0.8, 0.3],
        "neg_log10_padj": [3.0, 2.4, 1.7, 0.1, 0.5],
    })
