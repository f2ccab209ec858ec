from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List

import pysam

from .errors import ValidationError
from .models import PositionOfInterest
from .positions import PositionTable

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def resolve_contig_style(table: PositionTable, bam_contigs: List[str], requested: str = "auto") -> PositionTable:
    """Rename position contigs to the alignment file's naming style if they differ.

    Raises :class:`ValidationError` if no position contig exists in the
    alignment header afterwards. Header-less inputs (no @SQ lines) are
    accepted unchanged.
    """
    if not bam_contigs:
        logger.warning("Alignment header lists no references; contig names are not checked.")
        return table

    pos_style = detect_contig_style(table.reference_names)
    target_style = requested
    if requested == "auto":
        bam_style = detect_contig_style(bam_contigs)
        target_style = bam_style if bam_style != "unknown" else pos_style

    if pos_style != target_style:
        logger.warning(
            "Contig style mismatch detected (positions=%s, alignments=%s). Remapping positions to %s style.",
            pos_style,
            detect_contig_style(bam_contigs),
            target_style,
        )
        table = table.remap_contigs({c: remap_contig(c, target_style) for c in table.reference_names})

    known = set(bam_contigs)
    missing = [c for c in table.reference_names if c not in known]
    if len(missing) == len(table.reference_names):
        raise ValidationError(
            "Contig mismatch between positions file and alignment header (e.g., chr1 vs 1). "
            "Use --contig-style {ucsc,ensembl,auto} to override."
        )
    for c in missing:
        logger.warning("Reference %s from the positions file is absent from the alignment header", c)
    return table


def check_reference_alleles(table: PositionTable, fasta_path: str | Path) -> List[Dict[str, object]]:
    """Compare every wildtype allele with the reference FASTA.

    Mismatches are returned (and logged) rather than raised: a wildtype that
    differs from the reference is legitimate for, e.g., a reverted allele, but
    is usually a coordinate error worth a look.
    """
    mismatches: List[Dict[str, object]] = []
    try:
        fasta = pysam.FastaFile(str(fasta_path))
    except (OSError, ValueError) as e:
        raise ValidationError(f"Could not open reference FASTA {fasta_path}: {e}") from e

    with fasta:
        known = set(fasta.references)
        for p in table:
            if p.reference_name not in known:
                mismatches.append(_mismatch(p, None, "reference not in FASTA"))
                continue
            ref_seq = fasta.fetch(p.reference_name, p.start, p.end).upper()
            if ref_seq != p.wildtype_allele:
                mismatches.append(_mismatch(p, ref_seq, "wildtype differs from reference"))

    for m in mismatches:
        logger.warning(
            "Position %s (%s:%s-%s): %s (wildtype=%s, reference=%s)",
            m["label"],
            m["reference_name"],
            m["start"],
            m["end"],
            m["reason"],
            m["wildtype"],
            m["reference"],
        )
    return mismatches


def _mismatch(p: PositionOfInterest, ref_seq: str | None, reason: str) -> Dict[str, object]:
    return {
        "label": p.label,
        "reference_name": p.reference_name,
        "start": p.start,
        "end": p.end,
        "wildtype": p.wildtype_allele,
        "reference": ref_seq,
        "reason": reason,
    }
