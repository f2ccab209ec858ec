"""linkedmut: per-read linked mutation calling from aligned sequencing reads.

Most users should use the CLI:

    linkedmut score --positions positions.tsv --alignments reads.bam --output calls.csv

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
