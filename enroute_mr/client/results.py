"""
Load finished job output for inspection.
"""

import glob
import os

import pandas as pd

DEFAULT_NA_VALUES = ("NA",)


def list_part_files(output_path: str):
    return sorted(glob.glob(os.path.join(output_path, "part-*")))


def load_results(output_path: str, na_values=DEFAULT_NA_VALUES) -> pd.DataFrame:
    """
    Concatenate every part file of a job's output directory.

    Missing-value markers become NaN. Rows are sorted by the first two
    columns (year, market for the enroute-time job).

    Raises:
        FileNotFoundError: If the directory holds no part files
    """
    part_files = list_part_files(output_path)
    if not part_files:
        raise FileNotFoundError(f"No part files found in {output_path}")

    frames = [
        pd.read_csv(path, na_values=list(na_values), keep_default_na=False)
        for path in part_files
    ]
    df = pd.concat(frames, ignore_index=True)
    if len(df.columns) >= 2 and not df.empty:
        df = df.sort_values(list(df.columns[:2]), kind="mergesort").reset_index(drop=True)
    return df


def preview(df: pd.DataFrame, n: int = 6) -> str:
    """Render the first n rows as text"""
    return df.head(n).to_string(index=False)
