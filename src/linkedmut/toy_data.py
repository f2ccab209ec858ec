from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .cigar import parse_cigar_string
from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_REF = ("ACGT" * 50)[:200]

# label, start, end, wildtype, mutants
TOY_POSITIONS: List[Tuple[str, int, int, str, Tuple[str, ...]]] = [
    ("snv60", 60, 61, TOY_REF[60:61], ("G",)),
    ("mnv75", 75, 77, TOY_REF[75:77], ("CG",)),
    ("snv130", 130, 131, TOY_REF[130:131], ("A", "T")),
]


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def write_positions_file(path: str | Path, positions: Sequence[Tuple[str, int, int, str, Tuple[str, ...]]]) -> Path:
    path = Path(path)
    lines = ["#reference_name\tstart\tend\tlabel\twildtype\tmutant_1\t..."]
    for label, start, end, wt, mutants in positions:
        lines.append("\t".join([TOY_CONTIG, str(start), str(end), label, wt, *mutants]))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_segment(
    name: str,
    start0: int,
    seq: str,
    cigar: Optional[str] = None,
    *,
    mapq: int = 60,
    flag: int = 0,
    qual: Optional[str] = None,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    if flag & 0x4:
        a.reference_id = -1
        a.reference_start = -1
    else:
        a.reference_id = 0
        a.reference_start = start0
        a.mapping_quality = mapq
        a.cigartuples = parse_cigar_string(cigar) if cigar else [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array(qual if qual is not None else "I" * len(seq))
    return a


def _substitute(seq: List[str], start0: int, ref_pos: int, allele: str) -> None:
    for i, base in enumerate(allele):
        rel = ref_pos + i - start0
        if 0 <= rel < len(seq):
            seq[rel] = base


def _toy_reads() -> List[pysam.AlignedSegment]:
    reads: List[pysam.AlignedSegment] = []

    # Reads spanning snv60 and mnv75; even reads carry both mutations (linked).
    for i in range(10):
        start0 = 40 + i
        seq = list(TOY_REF[start0 : start0 + 50])
        if i % 2 == 0:
            _substitute(seq, start0, 60, "G")
            _substitute(seq, start0, 75, "CG")
        reads.append(make_segment(f"link_{i}", start0, "".join(seq)))

    # Deletion over snv60 -> ambiguous there.
    reads.append(make_segment("del_60", 50, TOY_REF[50:60] + TOY_REF[63:103], "10M3D40M"))

    # Insertion inside mnv75 -> ambiguous there.
    reads.append(make_segment("ins_75", 55, TOY_REF[55:76] + "CC" + TOY_REF[76:105], "21M2I29M"))

    # Reads over snv130; odd reads carry the first mutant.
    for i in range(10):
        start0 = 100 + i
        seq = list(TOY_REF[start0 : start0 + 50])
        if i % 2 == 1:
            _substitute(seq, start0, 130, "A")
        reads.append(make_segment(f"snv130_{i}", start0, "".join(seq)))

    # Overlaps nothing.
    reads.append(make_segment("far", 150, TOY_REF[150:190]))

    reads.sort(key=lambda r: r.reference_start)
    reads.append(make_segment("unmapped", -1, "ACGTACGTAC", flag=0x4))
    return reads


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference, BAM, and positions file suitable for quick demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - reads.bam (coordinate sorted, unmapped read last)
    - positions.tsv

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, TOY_CONTIG, TOY_REF)
    pysam.faidx(str(ref_fa))

    bam_path = outdir_p / "reads.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": TOY_CONTIG, "LN": len(TOY_REF)}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in _toy_reads():
            bam.write(r)

    positions_path = write_positions_file(outdir_p / "positions.tsv", TOY_POSITIONS)

    summary = {
        "ref_fa": str(ref_fa),
        "reads_bam": str(bam_path),
        "positions": str(positions_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
