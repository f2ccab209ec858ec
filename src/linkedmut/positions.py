from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import PositionOfInterest
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

_FIELDS = ("reference_name", "start", "end", "label", "wildtype_allele", "mutant_allele_1")
_SKIP_PREFIXES = ("#", "track", "browser")
_VALID_BASES = frozenset("ACGTN")
# Fixed columns of the wide CSV layout; a label may not shadow them.
_RESERVED_LABELS = frozenset(("read_id", "reference_name", "combined_pattern"))


@dataclass(frozen=True)
class PositionRow:
    """One raw line of the positions file, split but not yet validated."""

    line_no: int
    reference_name: str
    start: str
    end: str
    label: str
    wildtype_allele: str
    mutant_alleles: Tuple[str, ...]


@dataclass(frozen=True)
class _ContigIndex:
    """Positions on one contig sorted by (start, end).

    ``max_ends[i]`` is the largest ``end`` among ``positions[: i + 1]``; it is
    non-decreasing, so the first position that can reach a query start is
    found by bisection even when positions overlap each other.
    """

    positions: Tuple[PositionOfInterest, ...]
    starts: Tuple[int, ...]
    max_ends: Tuple[int, ...]


def load_position_rows(path: str | Path) -> List[PositionRow]:
    """Split a tab-delimited positions file (optionally gzipped) into rows.

    Columns: reference_name, start, end, label, wildtype_allele,
    mutant_allele_1[, mutant_allele_2, ...]. Comment (``#``), ``track``,
    ``browser`` and blank lines are skipped.
    """
    rows: List[PositionRow] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.rstrip("\r\n")
            if not line.strip() or line.startswith(_SKIP_PREFIXES):
                continue
            fields = line.split("\t")
            if len(fields) < len(_FIELDS):
                raise ValidationError(
                    f"expected at least {len(_FIELDS)} tab-separated columns, found {len(fields)}",
                    line_no=line_no,
                    field=_FIELDS[len(fields)],
                )
            fields = [f.strip() for f in fields]
            while len(fields) > len(_FIELDS) and fields[-1] == "":
                fields.pop()
            rows.append(
                PositionRow(
                    line_no=line_no,
                    reference_name=fields[0],
                    start=fields[1],
                    end=fields[2],
                    label=fields[3],
                    wildtype_allele=fields[4],
                    mutant_alleles=tuple(fields[5:]),
                )
            )
    logger.info("Read %d position rows from %s", len(rows), path)
    return rows


def _parse_coord(value: str, *, line_no: int, field: str) -> int:
    try:
        coord = int(value)
    except ValueError:
        raise ValidationError(f"not an integer: {value!r}", line_no=line_no, field=field) from None
    if coord < 0:
        raise ValidationError(f"must be non-negative, got {coord}", line_no=line_no, field=field)
    return coord


def _parse_allele(value: str, span: int, *, line_no: int, field: str) -> str:
    allele = value.upper()
    if not allele:
        raise ValidationError("allele is empty", line_no=line_no, field=field)
    bad = set(allele) - _VALID_BASES
    if bad:
        raise ValidationError(
            f"allele {value!r} contains non-base characters {''.join(sorted(bad))!r}",
            line_no=line_no,
            field=field,
        )
    if len(allele) != span:
        raise ValidationError(
            f"allele {value!r} has length {len(allele)} but the span end - start is {span}",
            line_no=line_no,
            field=field,
        )
    return allele


def position_from_row(row: PositionRow) -> PositionOfInterest:
    """Validate one raw row and turn it into a :class:`PositionOfInterest`."""
    ln = row.line_no
    if not row.reference_name:
        raise ValidationError("reference name is empty", line_no=ln, field="reference_name")
    if not row.label:
        raise ValidationError("label is empty", line_no=ln, field="label")
    start = _parse_coord(row.start, line_no=ln, field="start")
    end = _parse_coord(row.end, line_no=ln, field="end")
    if end <= start:
        raise ValidationError(f"end ({end}) must be greater than start ({start})", line_no=ln, field="end")
    if not row.mutant_alleles:
        raise ValidationError("at least one mutant allele is required", line_no=ln, field="mutant_allele_1")

    span = end - start
    wildtype = _parse_allele(row.wildtype_allele, span, line_no=ln, field="wildtype_allele")
    mutants: List[str] = []
    seen = {wildtype}
    for i, raw in enumerate(row.mutant_alleles, start=1):
        field = f"mutant_allele_{i}"
        allele = _parse_allele(raw, span, line_no=ln, field=field)
        if allele in seen:
            raise ValidationError(f"duplicate allele {allele!r}", line_no=ln, field=field)
        seen.add(allele)
        mutants.append(allele)

    return PositionOfInterest(
        reference_name=row.reference_name,
        start=start,
        end=end,
        label=row.label,
        wildtype_allele=wildtype,
        mutant_alleles=tuple(mutants),
        line_no=ln,
    )


class PositionTable:
    """Immutable per-contig lookup of positions of interest.

    Built once before scoring and shared read-only by every worker.
    """

    __slots__ = ("_by_contig", "_positions")

    def __init__(self, positions: Iterable[PositionOfInterest]) -> None:
        ordered = sorted(positions, key=lambda p: (p.reference_name, p.start, p.end, p.label))
        seen: Dict[str, PositionOfInterest] = {}
        for p in ordered:
            if p.label in _RESERVED_LABELS:
                raise ValidationError(
                    f"label {p.label!r} is reserved for an output column",
                    line_no=p.line_no or None,
                    field="label",
                )
            if "," in p.label:
                raise ValidationError(
                    f"label {p.label!r} must not contain a comma",
                    line_no=p.line_no or None,
                    field="label",
                )
            if p.label in seen:
                raise ValidationError(
                    f"duplicate label {p.label!r} (first used on line {seen[p.label].line_no})",
                    line_no=p.line_no or None,
                    field="label",
                )
            seen[p.label] = p

        by_contig: Dict[str, List[PositionOfInterest]] = {}
        for p in ordered:
            by_contig.setdefault(p.reference_name, []).append(p)

        index: Dict[str, _ContigIndex] = {}
        for contig, lst in by_contig.items():
            max_ends: List[int] = []
            running = -1
            for p in lst:
                running = max(running, p.end)
                max_ends.append(running)
            index[contig] = _ContigIndex(
                positions=tuple(lst),
                starts=tuple(p.start for p in lst),
                max_ends=tuple(max_ends),
            )
        self._by_contig = index
        self._positions = tuple(ordered)

    @classmethod
    def build(cls, rows: Sequence[PositionRow]) -> "PositionTable":
        """Validate raw rows; raises :class:`ValidationError` on the first bad one."""
        return cls(position_from_row(r) for r in rows)

    @classmethod
    def from_file(cls, path: str | Path) -> "PositionTable":
        table = cls.build(load_position_rows(path))
        if len(table) == 0:
            raise ValidationError(f"no positions of interest found in {path}")
        logger.info(
            "Loaded %d positions on %d reference(s)", len(table), len(table.reference_names)
        )
        return table

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[PositionOfInterest]:
        return iter(self._positions)

    @property
    def positions(self) -> Tuple[PositionOfInterest, ...]:
        """All positions, sorted by (reference_name, start, end)."""
        return self._positions

    @property
    def reference_names(self) -> List[str]:
        return sorted(self._by_contig)

    @property
    def labels(self) -> List[str]:
        return [p.label for p in self._positions]

    def overlapping(self, reference_name: Optional[str], start: int, end: int) -> List[PositionOfInterest]:
        """Positions whose ``[start, end)`` intersects the query, by ascending start."""
        idx = self._by_contig.get(reference_name) if reference_name is not None else None
        if idx is None or end <= start:
            return []
        i = bisect.bisect_right(idx.max_ends, start)
        j = bisect.bisect_left(idx.starts, end, lo=i)
        return [p for p in idx.positions[i:j] if p.end > start]

    def remap_contigs(self, mapping: Dict[str, str]) -> "PositionTable":
        """Return a new table with reference names rewritten through ``mapping``."""
        return PositionTable(
            replace(p, reference_name=mapping.get(p.reference_name, p.reference_name))
            for p in self._positions
        )
