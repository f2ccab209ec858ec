"""CSV output of linkage records.

Rows are written to ``<output>.partial`` and the file is renamed to its final
name only by :meth:`CsvSink.commit`. A run that fails leaves the ``.partial``
file behind so it is never mistaken for complete output.
"""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO

from .errors import OutputError
from .models import LinkageRecord
from .utils import open_textmaybe_gzip, partial_path

logger = logging.getLogger(__name__)

LAYOUTS = ("wide", "compact")


class CsvSink:
    """Single writer for linkage rows.

    ``wide`` writes one column per configured label (empty where the read does
    not overlap); ``compact`` writes ``label,outcome`` pairs for the overlapped
    positions only, so rows vary in width. The first line names the layout.
    """

    def __init__(self, path: str | Path, *, labels: Sequence[str], layout: str = "wide") -> None:
        if layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}, got {layout!r}")
        self.path = Path(path)
        self.partial = partial_path(self.path)
        self.layout = layout
        self.labels = list(labels)
        self._col: Dict[str, int] = {label: i for i, label in enumerate(self.labels)}
        self.rows_written = 0
        self._fh: Optional[TextIO] = None
        self._writer = None

    def open(self) -> "CsvSink":
        try:
            self.partial.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open_textmaybe_gzip(self.partial, "wt")
            self._fh.write(f"#layout={self.layout}\n")
            self._writer = csv.writer(self._fh, lineterminator="\n")
            if self.layout == "wide":
                header = ["read_id", "reference_name", *self.labels, "combined_pattern"]
            else:
                header = ["read_id", "reference_name", "positions...", "combined_pattern"]
            self._writer.writerow(header)
        except OSError as e:
            raise OutputError(f"Could not open output {self.partial}: {e}") from e
        return self

    def _row(self, rec: LinkageRecord) -> List[str]:
        if self.layout == "wide":
            cells = [""] * len(self.labels)
            for call in rec.calls:
                cells[self._col[call.position.label]] = call.tag
            return [rec.read_id, rec.reference_name, *cells, rec.combined_pattern]
        pairs: List[str] = []
        for call in rec.calls:
            pairs.extend((call.position.label, call.tag))
        return [rec.read_id, rec.reference_name, *pairs, rec.combined_pattern]

    def write(self, rec: LinkageRecord) -> None:
        if self._writer is None:
            raise OutputError("Sink is not open")
        try:
            self._writer.writerow(self._row(rec))
        except OSError as e:
            raise OutputError(f"Failed writing to {self.partial}: {e}") from e
        self.rows_written += 1

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                raise OutputError(f"Failed closing {self.partial}: {e}") from e
            finally:
                self._fh = None
                self._writer = None

    def commit(self) -> Path:
        """Close and move the partial file to its final name."""
        self.close()
        try:
            os.replace(self.partial, self.path)
        except OSError as e:
            raise OutputError(f"Could not finalize output {self.path}: {e}") from e
        logger.info("Wrote %d rows to %s", self.rows_written, self.path)
        return self.path

    def abort(self) -> None:
        """Close without committing; the ``.partial`` file stays as a marker."""
        try:
            self.close()
        except OutputError:
            logger.exception("Error while closing incomplete output %s", self.partial)
        logger.warning("Output is incomplete; partial rows left in %s", self.partial)

    def __enter__(self) -> "CsvSink":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
        elif self._fh is not None:
            self.commit()
