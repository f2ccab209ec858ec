from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Tuple, TextIO, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

PARTIAL_SUFFIX = ".partial"


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz") or p.endswith(".gz" + PARTIAL_SUFFIX):
        return gzip.open(p, mode, newline="")  # type: ignore[return-value]
    return open(p, mode, newline="")


def partial_path(path: str | Path) -> Path:
    """Where an output is written until it is complete."""
    p = Path(path)
    return p.with_name(p.name + PARTIAL_SUFFIX)


def sibling_path(path: str | Path, suffix: str) -> Path:
    """``calls.csv.gz`` + ``.summary.json`` -> ``calls.summary.json``."""
    p = Path(path)
    name = p.name
    for ext in (".gz", ".csv", ".tsv"):
        if name.endswith(ext):
            name = name[: -len(ext)]
    return p.with_name(name + suffix)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def chunked(iterable: Iterable[T], n: int) -> Iterator[List[T]]:
    chunk: List[T] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) >= n:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def tagged_chunks(iterable: Iterable[T], n: int) -> Iterator[Tuple[int, List[T]]]:
    """Like :func:`chunked`, with a sequence number so results can be put back in input order."""
    for i, chunk in enumerate(chunked(iterable, n)):
        yield i, chunk
