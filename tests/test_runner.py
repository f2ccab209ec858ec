import csv
import gzip
import json
from pathlib import Path

import pytest

from linkedmut.errors import DecodeError, OutputError
from linkedmut.positions import PositionTable
from linkedmut.runner import score_bam, score_chunk
from linkedmut.scorer import score_read
from linkedmut.sink import CsvSink
from linkedmut.utils import partial_path

from helpers import make_position, make_record


def _read_rows(path: Path):
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "rt", newline="") as fh:
        first = fh.readline().strip()
        return first, list(csv.reader(fh))


def test_score_bam_toy(toy, tmp_path: Path):
    table = PositionTable.from_file(toy["positions"])
    out = tmp_path / "out" / "calls.csv"
    summary = score_bam(bam_path=toy["reads_bam"], table=table, output=out, progress=False)

    layout, rows = _read_rows(out)
    assert layout == "#layout=wide"
    assert rows[0] == ["read_id", "reference_name", "snv60", "mnv75", "snv130", "combined_pattern"]
    by_read = {r[0]: r for r in rows[1:]}
    assert by_read["link_0"] == ["link_0", "chr1", "M0", "M0", "", "M0|M0"]
    assert by_read["link_1"] == ["link_1", "chr1", "WT", "WT", "", "WT|WT"]
    assert by_read["del_60"][-1] == "AMB|WT"
    assert by_read["ins_75"][-1] == "WT|AMB"
    assert by_read["snv130_1"] == ["snv130_1", "chr1", "", "", "M0", "M0"]
    assert "far" not in by_read
    assert "unmapped" not in by_read

    counts = summary["counts"]
    assert counts["reads_total"] == 24
    assert counts["reads_unmapped"] == 1
    assert counts["reads_linked"] == 22
    assert counts["reads_no_overlap"] == 1
    assert counts["coordinate_anomalies"] == 0
    assert summary["pattern_counts"]["snv60,mnv75"] == {"M0|M0": 5, "WT|WT": 5, "AMB|WT": 1, "WT|AMB": 1}
    assert summary["outcome_counts"]["snv130"] == {"WT": 5, "M0": 5}

    on_disk = json.loads((tmp_path / "out" / "calls.summary.json").read_text())
    assert on_disk["counts"] == counts
    assert not partial_path(out).exists()


def test_parallel_matches_sequential(toy, tmp_path: Path):
    table = PositionTable.from_file(toy["positions"])
    seq_out = tmp_path / "seq.csv"
    par_out = tmp_path / "par.csv"
    score_bam(bam_path=toy["reads_bam"], table=table, output=seq_out, progress=False)
    score_bam(
        bam_path=toy["reads_bam"],
        table=table,
        output=par_out,
        threads=2,
        chunk_size=3,
        progress=False,
    )
    assert seq_out.read_bytes() == par_out.read_bytes()

    unordered = tmp_path / "unordered.csv.gz"
    score_bam(
        bam_path=toy["reads_bam"],
        table=table,
        output=unordered,
        threads=2,
        chunk_size=3,
        ordered=False,
        progress=False,
    )
    _, seq_rows = _read_rows(seq_out)
    _, un_rows = _read_rows(unordered)
    assert sorted(seq_rows) == sorted(un_rows)


def test_compact_layout(toy, tmp_path: Path):
    table = PositionTable.from_file(toy["positions"])
    out = tmp_path / "compact.csv"
    score_bam(bam_path=toy["reads_bam"], table=table, output=out, layout="compact", progress=False)
    layout, rows = _read_rows(out)
    assert layout == "#layout=compact"
    by_read = {r[0]: r for r in rows[1:]}
    assert by_read["link_0"] == ["link_0", "chr1", "snv60", "M0", "mnv75", "M0", "M0|M0"]
    assert by_read["snv130_0"] == ["snv130_0", "chr1", "snv130", "WT", "WT"]


def test_read_filters(toy, tmp_path: Path):
    table = PositionTable.from_file(toy["positions"])
    summary = score_bam(
        bam_path=toy["reads_bam"], table=table, output=tmp_path / "q.csv", min_mapq=61, progress=False
    )
    assert summary["counts"]["reads_skipped_mapq"] == 23
    assert summary["counts"]["reads_linked"] == 0


def test_corrupt_input_leaves_partial_output(tmp_path: Path):
    bad = tmp_path / "bad.bam"
    bad.write_bytes(b"this is not a bam file\n" * 10)
    table = PositionTable([make_position(10)])
    out = tmp_path / "calls.csv"
    with pytest.raises(DecodeError, match="incomplete"):
        score_bam(bam_path=str(bad), table=table, output=out, progress=False)
    assert not out.exists()
    assert partial_path(out).exists()


def test_truncated_input_with_workers_leaves_partial_output(toy, tmp_path: Path):
    data = Path(toy["reads_bam"]).read_bytes()
    truncated = tmp_path / "truncated.bam"
    truncated.write_bytes(data[: len(data) // 2])
    table = PositionTable.from_file(toy["positions"])
    out = tmp_path / "calls.csv"
    with pytest.raises(DecodeError, match="incomplete"):
        score_bam(
            bam_path=str(truncated),
            table=table,
            output=out,
            threads=2,
            chunk_size=2,
            progress=False,
        )
    assert not out.exists()
    assert partial_path(out).exists()


def test_unwritable_summary_is_output_error(toy, tmp_path: Path):
    table = PositionTable.from_file(toy["positions"])
    out = tmp_path / "calls.csv"
    (tmp_path / "calls.summary.json").mkdir()
    with pytest.raises(OutputError, match="summary"):
        score_bam(bam_path=toy["reads_bam"], table=table, output=out, progress=False)


def test_score_chunk_counts_anomalies():
    table = PositionTable([make_position(120)])
    records = [
        make_record("T" * 20 + "G" + "T" * 29, read_id="ok"),
        make_record("A" * 10, cigar="50M", read_id="short"),
        make_record("A" * 50, start=500, read_id="elsewhere"),
    ]
    linked, anomalies = score_chunk(records, table)
    assert [r.read_id for r in linked] == ["ok"]
    assert anomalies == 1


def test_sink_commit_and_abort(tmp_path: Path):
    table = PositionTable([make_position(120, label="p")])
    linked = score_read(make_record("T" * 20 + "A" + "T" * 29), table)
    assert linked is not None

    out = tmp_path / "ok.csv.gz"
    with CsvSink(out, labels=table.labels) as sink:
        sink.write(linked)
    assert out.exists() and not partial_path(out).exists()
    _, rows = _read_rows(out)
    assert rows == [["read_id", "reference_name", "p", "combined_pattern"], ["r1", "chr1", "WT", "WT"]]

    blocked = tmp_path / "not_a_dir"
    blocked.write_text("")
    with pytest.raises(OutputError, match="Could not open output"):
        with CsvSink(blocked / "calls.csv", labels=table.labels) as sink:
            sink.write(linked)

    failed = tmp_path / "failed.csv"
    with pytest.raises(RuntimeError):
        with CsvSink(failed, labels=table.labels) as sink:
            sink.write(linked)
            raise RuntimeError("boom")
    assert not failed.exists()
    assert partial_path(failed).exists()
