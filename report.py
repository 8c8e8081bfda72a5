"""
report.py -- Write the results of a coverage run to disk.

Two outputs are produced:

* One bar chart per checksum showing how often each of the 256 digest values
  occurred over the uncorrupted blocks, written as ``<name>.png``.
* A two-column table ``algorithm,coverage_percent`` with one row per checksum.

Rendering is independent per checksum: a chart that cannot be written is
reported and skipped, and never touches the coverage records.
"""

import os
import sys
from typing import Dict, List, Sequence

import matplotlib
matplotlib.use('Agg') # headless backend
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from checksums import Checksum
from estimate_coverage import CoverageRecord, FrequencyTable

HIST_SIZE_PX = (800, 600)
HIST_DPI = 100


def save_histogram(name: str, hist: FrequencyTable, output_dir: str = ".") -> str:
    """Render a 256-bar histogram of digest values to ``<output_dir>/<name>.png``."""
    if len(hist) != 256:
        raise ValueError(f"expected 256 counts, got {len(hist)}")
    path = os.path.join(output_dir, f"{name}.png")
    fig, ax = plt.subplots(
        figsize=(HIST_SIZE_PX[0] / HIST_DPI, HIST_SIZE_PX[1] / HIST_DPI), dpi=HIST_DPI
    )
    try:
        ax.bar(np.arange(256), hist, width=1.0, align='edge', color='blue')
        ax.set_xlim(0, 256)
        ax.set_ylim(0, max(int(np.max(hist)), 1))
        ax.set_title(f"Histogram for {name}")
        ax.set_xlabel("digest value")
        ax.set_ylabel("blocks")
        fig.tight_layout()
        fig.savefig(path)
    finally:
        plt.close(fig)
    return path


def save_histograms(tables: Dict[Checksum, FrequencyTable], output_dir: str = ".") -> List[str]:
    """Save one histogram per checksum.

    Returns:
        Display names of the checksums whose chart could not be written.
    """
    failed: List[str] = []
    for variant, hist in tables.items():
        try:
            path = save_histogram(variant.display_name, hist, output_dir)
        except OSError as e:
            print(f"error: histogram for {variant.display_name} not written: {e}", file=sys.stderr)
            failed.append(variant.display_name)
            continue
        print(f"Histogram written to {path}")
    return failed


def coverage_frame(records: Sequence[CoverageRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            'algorithm': [r.name for r in records],
            'coverage_percent': [float(r.percentage) for r in records],
        }
    )


def save_coverages_csv(
    records: Sequence[CoverageRecord], output_dir: str = ".", filename: str = "coverage_adjacent_2bit.csv"
) -> str:
    path = os.path.join(output_dir, filename)
    coverage_frame(records).to_csv(path, index=False)
    return path
