from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Tuple

import matplotlib.pyplot as plt
import numpy as np

logger = logging.getLogger(__name__)

_FIXED_TAGS = ["WT", "AMB", "NC"]


def _tag_order(tags: List[str]) -> List[str]:
    mutants = sorted((t for t in tags if t.startswith("M")), key=lambda t: int(t[1:]))
    return ["WT", *mutants, "AMB", "NC"]


def plot_pattern_counts(
    *,
    pattern_counts: Dict[str, Dict[str, int]],
    out_png: str | Path,
    title: str = "Most frequent linkage patterns",
    top_n: int = 20,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    flat: List[Tuple[str, int]] = []
    for group, patterns in pattern_counts.items():
        for pattern, n in patterns.items():
            flat.append((f"{group}\n{pattern}", int(n)))
    flat.sort(key=lambda kv: (-kv[1], kv[0]))
    flat = flat[:top_n]

    plt.figure(figsize=(max(6.0, 0.5 * len(flat) + 2.0), 4.5))
    if flat:
        labels, values = zip(*flat)
        plt.bar(range(len(values)), values)
        plt.xticks(range(len(values)), labels, rotation=60, ha="right", fontsize=7)
    plt.ylabel("Read count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_outcome_counts(
    *,
    outcome_counts: Dict[str, Dict[str, int]],
    out_png: str | Path,
    title: str = "Calls per position",
) -> None:
    """Stacked bars: one bar per position label, one segment per outcome tag."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = list(outcome_counts)
    all_tags = {t for per_label in outcome_counts.values() for t in per_label}
    tags = _tag_order([t for t in all_tags if t not in _FIXED_TAGS])

    xs = np.arange(len(labels))
    bottom = np.zeros(len(labels), dtype=np.int64)

    plt.figure(figsize=(max(6.0, 0.6 * len(labels) + 2.0), 4.5))
    for tag in tags:
        heights = np.array([int(outcome_counts[label].get(tag, 0)) for label in labels], dtype=np.int64)
        if not heights.any():
            continue
        plt.bar(xs, heights, bottom=bottom, label=tag)
        bottom += heights
    plt.xticks(xs, labels, rotation=45, ha="right")
    plt.ylabel("Read count")
    plt.title(title)
    if bottom.any():
        plt.legend(fontsize=8)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_positions_per_read(
    *,
    positions_per_read_hist: Dict[str, int],
    out_png: str | Path,
    title: str = "Positions overlapped per read",
    max_bin: int = 20,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Collapse tail into max_bin+
    ys = np.zeros(max_bin + 1, dtype=np.int64)
    tail = 0
    for k, v in positions_per_read_hist.items():
        k = int(k)
        if k <= max_bin:
            ys[k] += int(v)
        else:
            tail += int(v)

    xticklabels = [str(x) for x in range(0, max_bin + 1)]
    if tail > 0:
        ys = np.append(ys, tail)
        xticklabels.append(f"{max_bin + 1}+")

    plt.figure()
    plt.bar(range(len(ys)), ys)
    plt.xlabel("Positions of interest overlapped by the read")
    plt.ylabel("Read count")
    plt.title(title)
    plt.xticks(range(len(ys)), xticklabels, rotation=0)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
