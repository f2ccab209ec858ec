import pytest

from linkedmut.cigar import (
    Unaligned,
    cigar_to_string,
    map_reference_coordinate,
    map_reference_coordinates,
    offsets_for_span,
    parse_cigar_string,
    query_length,
    reference_length,
)
from linkedmut.errors import CoordinateAnomaly


def C(s):
    return parse_cigar_string(s)


def test_parse_cigar_string():
    assert C("30M5D20M") == [(0, 30), (2, 5), (0, 20)]
    assert C("2H3S10=1X4I") == [(5, 2), (4, 3), (7, 10), (8, 1), (1, 4)]
    assert cigar_to_string(C("5S10M2N3M")) == "5S10M2N3M"
    for bad in ["", "M", "10", "10Q", "3M4"]:
        with pytest.raises(ValueError):
            parse_cigar_string(bad)


def test_lengths():
    cig = C("2H5S10M3I4D6N7M1S")
    assert reference_length(cig) == 10 + 4 + 6 + 7
    assert query_length(cig) == 5 + 10 + 3 + 7 + 1


def test_simple_match():
    cig = C("50M")
    assert map_reference_coordinate(cig, 100, 100) == 0
    assert map_reference_coordinate(cig, 100, 120) == 20
    assert map_reference_coordinate(cig, 100, 149) == 49
    assert map_reference_coordinate(cig, 100, 99) is Unaligned.OUT_OF_RANGE
    assert map_reference_coordinate(cig, 100, 150) is Unaligned.OUT_OF_RANGE


def test_deletion_and_skip():
    cig = C("30M5D20M")
    assert map_reference_coordinate(cig, 100, 129) == 29
    for t in range(130, 135):
        assert map_reference_coordinate(cig, 100, t) is Unaligned.DELETED
    assert map_reference_coordinate(cig, 100, 135) == 30

    spliced = C("10M100N10M")
    assert map_reference_coordinate(spliced, 0, 50) is Unaligned.DELETED
    assert map_reference_coordinate(spliced, 0, 110) == 10
    assert map_reference_coordinate(spliced, 0, 120) is Unaligned.OUT_OF_RANGE


def test_insertion_shifts_read_offset():
    cig = C("10M2I10M")
    assert map_reference_coordinate(cig, 0, 9) == 9
    assert map_reference_coordinate(cig, 0, 10) == 12


def test_soft_clips_never_claim_a_target():
    left = C("2H5S20M")
    assert map_reference_coordinate(left, 100, 100) == 5
    assert map_reference_coordinate(left, 100, 97) is Unaligned.CLIPPED
    assert map_reference_coordinate(left, 100, 95) is Unaligned.CLIPPED
    assert map_reference_coordinate(left, 100, 94) is Unaligned.OUT_OF_RANGE

    right = C("20M5S")
    assert map_reference_coordinate(right, 100, 119) == 19
    assert map_reference_coordinate(right, 100, 120) is Unaligned.CLIPPED
    assert map_reference_coordinate(right, 100, 124) is Unaligned.CLIPPED
    assert map_reference_coordinate(right, 100, 125) is Unaligned.OUT_OF_RANGE


def test_single_walk_matches_per_target():
    cig = C("3S12M2I8M4D6M100N9M1I5M2S")
    start = 1000
    targets = list(range(990, 1160))
    batch = map_reference_coordinates(cig, start, targets)
    assert batch == [map_reference_coordinate(cig, start, t) for t in targets]

    # Mapping is order-preserving where bases are aligned.
    aligned = [o for o in batch if isinstance(o, int)]
    assert aligned == sorted(aligned)
    assert len(set(aligned)) == len(aligned)


def test_offsets_for_span():
    assert offsets_for_span(C("50M"), 100, 120, 123) == (20, 23)
    assert offsets_for_span(C("50M"), 100, 148, 152) is Unaligned.OUT_OF_RANGE
    assert offsets_for_span(C("30M5D20M"), 100, 128, 132) is Unaligned.DELETED
    # Insertion between reference 109 and 110.
    assert offsets_for_span(C("10M2I10M"), 100, 109, 111) is None
    assert offsets_for_span(C("10M2I10M"), 100, 108, 110) == (8, 10)
    # Not covered wins over deleted.
    assert offsets_for_span(C("5M2D5M"), 100, 104, 113) is Unaligned.OUT_OF_RANGE


def test_unknown_operation_is_an_anomaly():
    with pytest.raises(CoordinateAnomaly):
        map_reference_coordinate([(0, 5), (9, 3)], 0, 7)
    with pytest.raises(CoordinateAnomaly):
        reference_length([(12, 1)])
