from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .alignments import alignment_contigs
from .errors import LinkedMutError
from .plotting import plot_outcome_counts, plot_pattern_counts, plot_positions_per_read
from .positions import PositionTable
from .report import render_report
from .runner import score_bam
from .sink import LAYOUTS
from .toy_data import make_toy_data
from .utils import partial_path, sibling_path, write_json
from .validation import check_reference_alleles, resolve_contig_style


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> Optional[Path]:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is None:
        return None
    try:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
    except OSError as e:
        # The output location itself is checked when the sink opens.
        logging.getLogger("linkedmut").warning("Cannot write log file %s: %s", logfile, e)
        return None
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(log_fmt))
    logging.getLogger().addHandler(fh)
    return logfile


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _positive_int(v: str) -> int:
    n = int(v)
    if n < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {v}")
    return n


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    if isinstance(err, LinkedMutError):
        return err.exit_code
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="linkedmut",
        description=(
            "linkedmut: call wildtype/mutant alleles at several positions per aligned read "
            "and report which mutations occur together on the same read."
        ),
    )
    p.add_argument("--version", action="version", version=f"linkedmut {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM, and positions file for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # score
    # -----------------
    s = sub.add_parser(
        "score",
        help="Score every read overlapping the positions of interest and write per-read linkage rows.",
    )
    s.add_argument(
        "--positions",
        required=True,
        type=_path_exists,
        help="Tab-delimited positions file: contig, start, end, label, wildtype, mutant1[, mutant2...].",
    )
    s.add_argument(
        "--alignments",
        required=True,
        type=_path_exists,
        help="Alignment file (BAM/SAM/CRAM), read in file order; no index needed.",
    )
    s.add_argument("--output", required=True, help="Output CSV (.csv or .csv.gz).")
    s.add_argument(
        "--reference",
        default=None,
        type=_path_exists,
        help="Optional reference FASTA (faidx-indexed) to check wildtype alleles against.",
    )
    s.add_argument(
        "--contig-style",
        choices=["ucsc", "ensembl", "auto"],
        default="auto",
        help="Contig naming style to reconcile the positions file with the alignment header.",
    )
    s.add_argument(
        "--layout",
        choices=list(LAYOUTS),
        default="wide",
        help="wide: one column per position label; compact: label,outcome pairs per overlapped position.",
    )
    s.add_argument(
        "--min-baseq",
        type=int,
        default=0,
        help="Bases below this quality make the call ambiguous (0 disables).",
    )
    s.add_argument("--min-mapq", type=int, default=0, help="Skip reads with lower mapping quality.")

    # Read filters
    s.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    s.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    s.add_argument(
        "--include-supplementary", action="store_true", help="Include supplementary alignments."
    )

    # Execution
    s.add_argument("--threads", type=_positive_int, default=1, help="Worker processes for scoring.")
    s.add_argument("--chunk-size", type=_positive_int, default=2000, help="Records per worker task.")
    s.add_argument(
        "--unordered",
        action="store_true",
        help="With --threads > 1, write rows as chunks finish instead of in input order.",
    )
    s.add_argument("--no-report", action="store_true", help="Skip the HTML report and plots.")
    s.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    s.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    s.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "linkedmut quickstart (copy/paste):",
        "",
        "1) Try it on toy data:",
        "   linkedmut make-toy-data --outdir toy/",
        "   linkedmut score \\",
        "     --positions toy/positions.tsv \\",
        "     --alignments toy/reads.bam \\",
        "     --output results/calls.csv",
        "   Outputs: results/calls.csv, results/calls.summary.json, results/calls.report.html",
        "",
        "2) Large BAM, several cores, check wildtypes against the reference:",
        "   linkedmut score \\",
        "     --positions positions.tsv \\",
        "     --alignments sample.bam \\",
        "     --reference ref.fa \\",
        "     --threads 8 --min-baseq 20 \\",
        "     --output results/calls.csv.gz",
        "",
        "Tip: use --dry-run to validate the positions file before a long run.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _write_plots(run: Dict[str, object], output: Path) -> Dict[str, str]:
    plots_dir = sibling_path(output, ".plots")
    plots_dir.mkdir(parents=True, exist_ok=True)

    pattern_png = plots_dir / "pattern_counts.png"
    outcome_png = plots_dir / "outcome_counts.png"
    per_read_png = plots_dir / "positions_per_read.png"

    plot_pattern_counts(pattern_counts=run["pattern_counts"], out_png=pattern_png)
    plot_outcome_counts(outcome_counts=run["outcome_counts"], out_png=outcome_png)
    plot_positions_per_read(positions_per_read_hist=run["positions_per_read_hist"], out_png=per_read_png)

    return {
        "pattern_counts": str(Path(plots_dir.name) / pattern_png.name),
        "outcome_counts": str(Path(plots_dir.name) / outcome_png.name),
        "positions_per_read": str(Path(plots_dir.name) / per_read_png.name),
    }


def cmd_score(args: argparse.Namespace) -> int:
    output = Path(args.output).expanduser().resolve()
    logfile = None if args.dry_run else output.parent / "logs" / "score.log"
    log_path = _setup_logging(args.verbose, logfile=logfile)

    logger = logging.getLogger("linkedmut")
    logger.info("linkedmut %s", __version__)

    try:
        # Everything that can reject the positions file runs before any output exists.
        table = PositionTable.from_file(args.positions)
        table = resolve_contig_style(table, alignment_contigs(args.alignments), args.contig_style)

        reference_mismatches: List[Dict[str, object]] = []
        if args.reference is not None:
            reference_mismatches = check_reference_alleles(table, args.reference)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Positions: {len(table)} on {', '.join(table.reference_names)}")
            if reference_mismatches:
                print(f"Reference check: {len(reference_mismatches)} wildtype mismatch(es), see log.")
            print("Planned outputs:")
            print(f"  calls -> {output} (layout={args.layout})")
            print(f"  summary -> {sibling_path(output, '.summary.json')}")
            if not args.no_report:
                print(f"  report -> {sibling_path(output, '.report.html')}")
            return 0

        stale = partial_path(output)
        if stale.exists():
            logger.warning("Removing incomplete output from a previous run: %s", stale)
            stale.unlink()

        run = score_bam(
            bam_path=args.alignments,
            table=table,
            output=output,
            layout=args.layout,
            min_baseq=int(args.min_baseq),
            min_mapq=int(args.min_mapq),
            skip_duplicates=not bool(args.keep_duplicates),
            include_secondary=bool(args.include_secondary),
            include_supplementary=bool(args.include_supplementary),
            threads=int(args.threads),
            chunk_size=int(args.chunk_size),
            ordered=not bool(args.unordered),
            progress=not bool(args.no_progress),
        )

        if reference_mismatches:
            write_json(sibling_path(output, ".reference_mismatches.json"), reference_mismatches)

        if not args.no_report:
            plots = _write_plots(run, output)
            report_path = render_report(
                out_path=sibling_path(output, ".report.html"),
                version=__version__,
                run=run,
                positions_path=args.positions,
                plots=plots,
                reference_mismatches=reference_mismatches,
            )
            logger.info("Report written: %s", report_path)

        print(str(output))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "score":
        return cmd_score(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
