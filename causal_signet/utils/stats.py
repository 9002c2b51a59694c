"""Statistical helpers shared by the activity and network modules."""

from typing import Optional
import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests


def _bh(pvalues: pd.Series) -> pd.Series:
    adjusted = multipletests(pvalues.fillna(1.0).to_numpy(), method="fdr_bh")[1]
    return pd.Series(adjusted, index=pvalues.index)


def apply_bh_correction(
    df: pd.DataFrame,
    pvalue_col: str = "pvalue",
    group_cols: Optional[list] = None,
) -> pd.DataFrame:
    """Benjamini-Hochberg adjustment of a p-value column.

    Missing p-values count as 1. With group_cols, each group (for example
    one contrast) is adjusted on its own.

    Args:
        df: Table with one test per row.
        pvalue_col: Column holding the unadjusted p-values.
        group_cols: Columns whose unique combinations define the groups.

    Returns:
        Copy of df with a fresh RangeIndex and the added columns 'FDR' and
        'neg_log10_FDR'.
    """
    df = df.reset_index(drop=True)
    if df.empty:
        return df.assign(FDR=pd.Series(dtype=float), neg_log10_FDR=pd.Series(dtype=float))

    if group_cols:
        df["FDR"] = df.groupby(group_cols, group_keys=False)[pvalue_col].apply(_bh)
    else:
        df["FDR"] = _bh(df[pvalue_col])
    df["neg_log10_FDR"] = -np.log10(df["FDR"].clip(lower=np.finfo(float).tiny))
    return df


def top_n_by_magnitude(values: pd.Series, n: int) -> pd.Series:
    """Return the n entries with the largest absolute value, keeping sign.

    Ties are broken by index label so the selection is reproducible.

    Args:
        values: Series of signed scores indexed by node/gene name.
        n: Number of entries to keep.

    Returns:
        Series ordered by decreasing magnitude.
    """
    values = values.dropna()
    order = (
        pd.DataFrame({"abs": values.abs(), "name": values.index.astype(str)}, index=values.index)
        .sort_values(["abs", "name"], ascending=[False, True])
        .index
    )
    return values.loc[order].head(n)


def scale_to_unit(values: pd.Series) -> pd.Series:
    """Scale signed values into [-1, 1] by the maximum absolute value.

    An all-zero (or empty) input is returned unchanged.
    """
    max_abs = values.abs().max()
    if not np.isfinite(max_abs) or max_abs == 0:
        return values.astype(float)
    return values / max_abs

