import subprocess
import sys
from pathlib import Path

from linkedmut.utils import partial_path


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "linkedmut"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _score(toy, out: Path, *extra: str) -> subprocess.CompletedProcess:
    return _run_cli(
        [
            "score",
            "--positions",
            toy["positions"],
            "--alignments",
            toy["reads_bam"],
            "--output",
            str(out),
            "--no-progress",
            *extra,
        ]
    )


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "linkedmut score" in cp.stdout
    assert "linkedmut make-toy-data" in cp.stdout


def test_make_toy_data_and_score(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    assert (toy_dir / "reads.bam").exists()

    out = tmp_path / "out" / "calls.csv"
    cp = _run_cli(
        [
            "score",
            "--positions",
            str(toy_dir / "positions.tsv"),
            "--alignments",
            str(toy_dir / "reads.bam"),
            "--reference",
            str(toy_dir / "toy_ref.fa"),
            "--output",
            str(out),
            "--no-progress",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert out.exists()
    assert (tmp_path / "out" / "calls.summary.json").exists()
    assert (tmp_path / "out" / "calls.report.html").exists()
    assert (tmp_path / "out" / "calls.plots" / "pattern_counts.png").exists()
    assert not (tmp_path / "out" / "calls.reference_mismatches.json").exists()
    assert "M0|M0" in out.read_text()


def test_score_with_workers_and_no_report(toy, tmp_path: Path) -> None:
    out = tmp_path / "calls.csv.gz"
    cp = _score(toy, out, "--threads", "2", "--chunk-size", "4", "--no-report", "--layout", "compact")
    assert cp.returncode == 0, cp.stderr
    assert out.exists()
    assert not (tmp_path / "calls.report.html").exists()


def test_dry_run_does_not_write_outputs(toy, tmp_path: Path) -> None:
    out = tmp_path / "dry" / "calls.csv"
    cp = _score(toy, out, "--dry-run")
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert not out.exists()
    assert not (tmp_path / "dry" / "calls.summary.json").exists()


def test_invalid_positions_exit_code(toy, tmp_path: Path) -> None:
    bad = tmp_path / "bad.tsv"
    bad.write_text("chr1\t60\t61\tsnv60\tA\tG\nchr1\t75\t77\tmnv75\tTA\tC\n")
    out = tmp_path / "calls.csv"
    cp = _run_cli(
        ["score", "--positions", str(bad), "--alignments", toy["reads_bam"], "--output", str(out)]
    )
    assert cp.returncode == 3
    assert "ValidationError" in cp.stderr
    assert "line 2" in cp.stderr
    assert "mutant_allele_1" in cp.stderr
    assert not out.exists()
    assert not partial_path(out).exists()


def test_corrupt_alignments_exit_code(toy, tmp_path: Path) -> None:
    bad = tmp_path / "broken.bam"
    bad.write_bytes(b"\x00garbage" * 64)
    out = tmp_path / "calls.csv"
    cp = _run_cli(
        ["score", "--positions", toy["positions"], "--alignments", str(bad), "--output", str(out)]
    )
    assert cp.returncode == 4
    assert "DecodeError" in cp.stderr
    assert not out.exists()


def test_contig_mismatch_message(toy, tmp_path: Path) -> None:
    cp = _score(toy, tmp_path / "calls.csv", "--contig-style", "ensembl")
    assert cp.returncode == 3
    assert "Contig mismatch" in cp.stderr


def test_ensembl_positions_remapped_to_bam_style(toy, tmp_path: Path) -> None:
    positions = Path(toy["positions"])
    ensembl = tmp_path / "ensembl.tsv"
    ensembl.write_text(positions.read_text().replace("chr1\t", "1\t"))
    out = tmp_path / "calls.csv"
    cp = _run_cli(
        [
            "score",
            "--positions",
            str(ensembl),
            "--alignments",
            toy["reads_bam"],
            "--output",
            str(out),
            "--no-progress",
            "--no-report",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert "link_0,chr1,M0,M0,,M0|M0" in out.read_text()


def test_unwritable_output_exit_code(toy, tmp_path: Path) -> None:
    blocker = tmp_path / "results"
    blocker.write_text("a file, not a directory\n")
    cp = _score(toy, blocker / "calls.csv", "--no-report")
    assert cp.returncode == 5
    assert "OutputError" in cp.stderr
    assert blocker.read_text() == "a file, not a directory\n"


def test_reserved_label_exit_code(toy, tmp_path: Path) -> None:
    bad = tmp_path / "reserved.tsv"
    bad.write_text("chr1\t60\t61\tread_id\tA\tG\n")
    out = tmp_path / "calls.csv"
    cp = _run_cli(
        ["score", "--positions", str(bad), "--alignments", toy["reads_bam"], "--output", str(out)]
    )
    assert cp.returncode == 3
    assert "reserved" in cp.stderr
    assert not partial_path(out).exists()
