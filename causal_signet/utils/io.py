"""I/O helpers for loading and saving analysis tables."""

from pathlib import Path
import pandas as pd
import yaml

EDGE_COLUMNS = ["source", "interaction", "target"]


def _sep_for(path: str | Path) -> str:
    suffix = Path(path).suffix.lower()
    return "\t" if suffix in {".tsv", ".txt", ".sif", ".tab"} else ","


def read_table(path: str | Path, **kwargs) -> pd.DataFrame:
    """Read a CSV or TSV table, choosing the delimiter from the file suffix.

    Args:
        path: Path to a .csv, .tsv, .txt or .sif file.
        **kwargs: Passed through to pandas.read_csv.

    Returns:
        DataFrame with the file contents.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input table not found: {path}")
    return pd.read_csv(path, sep=_sep_for(path), **kwargs)


def write_table(df: pd.DataFrame, path: str | Path, index: bool = False) -> None:
    """Write a DataFrame to CSV or TSV depending on the file suffix."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep=_sep_for(path), index=index)


def load_interactions(
    path: str | Path,
    required: set | None = None,
    text_cols: list | None = None,
) -> pd.DataFrame:
    """Load a raw interaction database dump.

    Args:
        path: CSV/TSV export of an interaction database (e.g. OmniPath).
        required: Column names that must be present.
        text_cols: Identifier columns read as text, so numeric IDs such as
            Entrez '7157' keep their spelling.

    Returns:
        DataFrame with one row per interaction record.

    Raises:
        ValueError: If required columns are missing.
    """
    df = read_table(path, dtype={c: str for c in text_cols or []})
    if required:
        missing = set(required) - set(df.columns)
        if missing:
            raise ValueError(f"Interaction table missing columns: {sorted(missing)}")
    return df


def load_edges(path: str | Path) -> pd.DataFrame:
    """Load a signed edge table (source, interaction, target).

    Args:
        path: TSV written by save_edges().

    Returns:
        DataFrame with columns ['source', 'interaction', 'target'].

    Raises:
        ValueError: If required columns are missing.
    """
    df = read_table(path, dtype={"source": str, "target": str})
    missing = set(EDGE_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Edge table missing columns: {sorted(missing)}")
    df = df[EDGE_COLUMNS].copy()
    df["interaction"] = df["interaction"].astype(int)
    return df


def save_edges(df: pd.DataFrame, path: str | Path) -> None:
    """Save a signed edge table as tab-separated text.

    Args:
        df: DataFrame with columns ['source', 'interaction', 'target'].
        path: Output path; always written tab-separated regardless of suffix.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df[EDGE_COLUMNS].to_csv(path, sep="\t", index=False)


def load_config(path: str | Path) -> dict:
    """Load a YAML configuration file.

    Args:
        path: Path to a YAML config file.

    Returns:
        Dictionary of configuration parameters.

    Raises:
        FileNotFoundError: If the config file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        return yaml.safe_load(f) or {}
