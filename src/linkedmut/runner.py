from __future__ import annotations

import logging
import multiprocessing
import time
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Tuple

from tqdm import tqdm

from .alignments import iter_alignment_records
from .errors import CoordinateAnomaly, DecodeError, OutputError
from .models import AlignmentRecord, LinkageRecord
from .positions import PositionTable
from .scorer import score_read
from .sink import CsvSink
from .utils import sibling_path, tagged_chunks, write_json

logger = logging.getLogger(__name__)

ChunkResult = Tuple[int, List[LinkageRecord], int]

# Installed once per worker process by _init_worker.
_WORKER_TABLE: Optional[PositionTable] = None
_WORKER_MIN_BASEQ = 0


def _init_worker(table: PositionTable, min_baseq: int) -> None:
    global _WORKER_TABLE, _WORKER_MIN_BASEQ
    _WORKER_TABLE = table
    _WORKER_MIN_BASEQ = min_baseq


def score_chunk(
    records: Iterable[AlignmentRecord], table: PositionTable, *, min_baseq: int = 0
) -> Tuple[List[LinkageRecord], int]:
    """Score a batch of records; returns linkage records and the number of anomalies skipped."""
    out: List[LinkageRecord] = []
    anomalies = 0
    for rec in records:
        try:
            res = score_read(rec, table, min_baseq=min_baseq)
        except CoordinateAnomaly as e:
            anomalies += 1
            logger.debug("Skipping record: %s", e)
            continue
        if res is not None:
            out.append(res)
    return out, anomalies


def _score_tagged_chunk(item: Tuple[int, List[AlignmentRecord]]) -> ChunkResult:
    idx, records = item
    assert _WORKER_TABLE is not None, "worker not initialized"
    linked, anomalies = score_chunk(records, _WORKER_TABLE, min_baseq=_WORKER_MIN_BASEQ)
    return idx, linked, anomalies


class _RunStats:
    """Streaming counters for summary.json and the report."""

    def __init__(self, table: PositionTable) -> None:
        self.counts: Dict[str, int] = {
            "reads_total": 0,
            "reads_unmapped": 0,
            "reads_skipped_secondary": 0,
            "reads_skipped_supplementary": 0,
            "reads_skipped_duplicates": 0,
            "reads_skipped_mapq": 0,
            "reads_scored": 0,
            "reads_linked": 0,
            "reads_no_overlap": 0,
            "coordinate_anomalies": 0,
        }
        self.outcome_counts: Dict[str, Dict[str, int]] = {label: {} for label in table.labels}
        self.pattern_counts: Dict[str, Dict[str, int]] = {}
        self.positions_per_read: Dict[int, int] = {}

    def add(self, rec: LinkageRecord) -> None:
        self.counts["reads_linked"] += 1
        for call in rec.calls:
            per_label = self.outcome_counts[call.position.label]
            per_label[call.tag] = per_label.get(call.tag, 0) + 1
        group = ",".join(rec.labels)
        patterns = self.pattern_counts.setdefault(group, {})
        patterns[rec.combined_pattern] = patterns.get(rec.combined_pattern, 0) + 1
        n = len(rec.calls)
        self.positions_per_read[n] = self.positions_per_read.get(n, 0) + 1


def _filtered(
    records: Iterable[AlignmentRecord],
    stats: _RunStats,
    *,
    min_mapq: int,
    skip_duplicates: bool,
    include_secondary: bool,
    include_supplementary: bool,
) -> Iterator[AlignmentRecord]:
    counts = stats.counts
    for rec in records:
        counts["reads_total"] += 1
        if not rec.is_mapped:
            counts["reads_unmapped"] += 1
            continue
        if rec.is_secondary and not include_secondary:
            counts["reads_skipped_secondary"] += 1
            continue
        if rec.is_supplementary and not include_supplementary:
            counts["reads_skipped_supplementary"] += 1
            continue
        if skip_duplicates and rec.is_duplicate:
            counts["reads_skipped_duplicates"] += 1
            continue
        if rec.mapping_quality < min_mapq:
            counts["reads_skipped_mapq"] += 1
            continue
        counts["reads_scored"] += 1
        yield rec


def _run_inline(
    chunks: Iterable[Tuple[int, List[AlignmentRecord]]], table: PositionTable, min_baseq: int
) -> Iterator[ChunkResult]:
    for idx, records in chunks:
        linked, anomalies = score_chunk(records, table, min_baseq=min_baseq)
        yield idx, linked, anomalies


def _run_pool(
    chunks: Iterable[Tuple[int, List[AlignmentRecord]]],
    table: PositionTable,
    min_baseq: int,
    *,
    threads: int,
    ordered: bool,
) -> Iterator[ChunkResult]:
    """Score chunks on a process pool with a bounded number of chunks in flight.

    Decoding stays in this process. Leaving the ``with`` block for any reason,
    including an exception raised while decoding or writing, terminates the
    workers before another chunk is dispatched.
    """
    max_in_flight = threads * 2
    with multiprocessing.Pool(processes=threads, initializer=_init_worker, initargs=(table, min_baseq)) as pool:
        pending: Deque[multiprocessing.pool.AsyncResult] = deque()

        def _next_result() -> ChunkResult:
            if not ordered:
                for i, res in enumerate(pending):
                    if res.ready():
                        del pending[i]
                        return res.get()
            return pending.popleft().get()

        for item in chunks:
            pending.append(pool.apply_async(_score_tagged_chunk, (item,)))
            while len(pending) >= max_in_flight:
                yield _next_result()
        while pending:
            yield _next_result()


def score_bam(
    *,
    bam_path: str,
    table: PositionTable,
    output: str | Path,
    layout: str = "wide",
    min_baseq: int = 0,
    min_mapq: int = 0,
    skip_duplicates: bool = True,
    include_secondary: bool = False,
    include_supplementary: bool = False,
    threads: int = 1,
    chunk_size: int = 2000,
    ordered: bool = True,
    progress: bool = True,
) -> Dict[str, object]:
    """Main workhorse: stream the alignment file, score reads, write CSV, return summary dict.

    The CSV is committed to ``output`` only when every record was decoded and
    written; otherwise ``<output>.partial`` is left behind and the error is
    re-raised.
    """
    t0 = time.time()
    if threads < 1:
        raise ValueError("threads must be >= 1")
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    stats = _RunStats(table)
    records: Iterable[AlignmentRecord] = iter_alignment_records(bam_path)
    if progress:
        records = tqdm(records, unit="read", desc="Scoring reads")
    chunks = tagged_chunks(
        _filtered(
            records,
            stats,
            min_mapq=min_mapq,
            skip_duplicates=skip_duplicates,
            include_secondary=include_secondary,
            include_supplementary=include_supplementary,
        ),
        chunk_size,
    )

    if threads == 1:
        results = _run_inline(chunks, table, min_baseq)
    else:
        results = _run_pool(chunks, table, min_baseq, threads=threads, ordered=ordered)

    sink = CsvSink(output, labels=table.labels, layout=layout)
    with sink:
        try:
            for _idx, linked, anomalies in results:
                stats.counts["coordinate_anomalies"] += anomalies
                for rec in linked:
                    sink.write(rec)
                    stats.add(rec)
        except DecodeError as e:
            raise DecodeError(
                f"{e} ({sink.rows_written} rows already written to {sink.partial}; output is incomplete)"
            ) from e
        finally:
            # Stops the worker pool now rather than when the generator is collected.
            results.close()

    counts = stats.counts
    counts["reads_no_overlap"] = counts["reads_scored"] - counts["reads_linked"] - counts["coordinate_anomalies"]
    if counts["coordinate_anomalies"]:
        logger.warning(
            "Skipped %d record(s) whose CIGAR was inconsistent with the read",
            counts["coordinate_anomalies"],
        )

    dt = time.time() - t0
    summary: Dict[str, object] = {
        "bam_path": str(bam_path),
        "output": str(output),
        "layout": layout,
        "n_positions": len(table),
        "min_baseq": int(min_baseq),
        "min_mapq": int(min_mapq),
        "skip_duplicates": bool(skip_duplicates),
        "include_secondary": bool(include_secondary),
        "include_supplementary": bool(include_supplementary),
        "threads": int(threads),
        "ordered": bool(ordered),
        "counts": counts,
        "outcome_counts": stats.outcome_counts,
        "pattern_counts": stats.pattern_counts,
        "positions_per_read_hist": {str(k): v for k, v in sorted(stats.positions_per_read.items())},
        "runtime_seconds": float(dt),
    }
    summary_path = sibling_path(output, ".summary.json")
    try:
        write_json(summary_path, summary)
    except OSError as e:
        raise OutputError(f"Could not write run summary {summary_path}: {e}") from e
    return summary
