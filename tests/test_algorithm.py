import pytest

from bamdedup.algorithm import get_5p_pos, get_score, identify_dups
from bamdedup.bamio import BamRecord, CigarOp, Flag
from bamdedup.metadata import Metadata


def make_se(lib_id, ref_id, pos, rev, score, idx, paired_end):
    return Metadata(
        lib_id=lib_id,
        ref_id1=ref_id,
        pos1=pos,
        rev1=rev,
        rev2=0,
        ref_id2=-1,
        pos2=0,
        score=score,
        idx1=idx,
        idx2=0,
        paired_end=paired_end,
    )


def make_pe(lib_id, ref_id1, pos1, rev1, ref_id2, pos2, rev2, score, idx1, idx2):
    return Metadata(
        lib_id=lib_id,
        ref_id1=ref_id1,
        pos1=pos1,
        rev1=rev1,
        rev2=rev2,
        ref_id2=ref_id2,
        pos2=pos2,
        score=score,
        idx1=idx1,
        idx2=idx2,
        paired_end=1,
    )


def test_empty_group():
    mask = set()
    assert identify_dups([], mask, set()) == (0, 0, 0)
    assert mask == set()


def test_single_read_not_marked():
    group = [make_se(0, 0, 100, 0, 50, 0, 0)]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 0, 0)
    assert not mask


def test_fragment_deduplication():
    group = [
        make_se(0, 0, 100, 0, 50, 0, 0),
        make_se(0, 0, 100, 0, 70, 1, 0),
        make_se(0, 0, 100, 0, 40, 2, 0),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 0, 2)
    assert len(mask) == 2
    assert 1 not in mask


def test_fragment_tie_keeps_first():
    group = [
        make_se(0, 0, 100, 0, 60, 5, 0),
        make_se(0, 0, 100, 0, 60, 6, 0),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 0, 1)
    assert mask == {6}


def test_orphan_handling():
    group = [
        make_se(0, 0, 100, 0, 50, 0, 0),
        make_pe(0, 0, 100, 0, 1, 200, 1, 60, 1, 2),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (1, 0, 0)
    assert 0 in mask
    assert mask == {0}


def test_pe_deduplication():
    group = [
        make_pe(0, 0, 100, 0, 1, 200, 1, 70, 0, 1),
        make_pe(0, 0, 100, 0, 1, 200, 1, 50, 2, 3),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 2, 0)
    assert len(mask) == 2
    assert 0 not in mask
    assert 1 not in mask


def test_pe_tie_keeps_last():
    group = [
        make_pe(0, 0, 100, 0, 1, 200, 1, 50, 0, 1),
        make_pe(0, 0, 100, 0, 1, 200, 1, 50, 2, 3),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 2, 0)
    assert mask == {0, 1}


def test_pe_different_mates_not_marked():
    group = [
        make_pe(0, 0, 100, 0, 1, 200, 1, 70, 0, 1),
        make_pe(0, 0, 100, 0, 1, 300, 1, 50, 2, 3),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 0, 0)
    assert mask == set()


def test_different_library_separate():
    group = [
        make_se(0, 0, 100, 0, 50, 0, 0),
        make_se(0, 0, 100, 0, 60, 1, 0),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (0, 0, 1)
    assert len(mask) == 1


def test_pe_second_ends_contains_check():
    group = [make_se(0, 0, 100, 0, 50, 0, 0)]
    pe_second_ends = {(0, 0, 100, 0)}
    mask = set()
    assert identify_dups(group, mask, pe_second_ends) == (1, 0, 0)
    assert mask == {0}


def test_unmatched_pair_read_marks_fragment_as_orphan():
    group = [
        make_se(0, 0, 100, 0, 90, 0, 0),
        make_se(0, 0, 100, 0, 10, 1, 1),
    ]
    mask = set()
    assert identify_dups(group, mask, set()) == (1, 0, 0)
    assert mask == {0}


@pytest.mark.parametrize(
    "flags, pos, cigar, expected",
    [
        (0, 99, [CigarOp("M", 50)], 99),
        (0, 99, [CigarOp("S", 5), CigarOp("M", 45)], 94),
        (0, 99, [CigarOp("H", 3), CigarOp("S", 2), CigarOp("M", 45)], 94),
        (Flag.REVERSE, 99, [CigarOp("M", 50)], 149),
        (Flag.REVERSE, 99, [CigarOp("M", 40), CigarOp("S", 10)], 149),
        (Flag.REVERSE, 99, [CigarOp("S", 4), CigarOp("M", 20), CigarOp("D", 5),
                            CigarOp("I", 3), CigarOp("M", 10), CigarOp("H", 2)], 136),
        (0, -1, [CigarOp("M", 50)], -1),
        (Flag.REVERSE, -1, [CigarOp("M", 50)], -1),
    ],
)
def test_get_5p_pos(flags, pos, cigar, expected):
    record = BamRecord(flags=int(flags), pos=pos, ref_id=0, cigar=cigar)
    assert get_5p_pos(record) == expected


def test_get_score_sums_high_qualities():
    record = BamRecord(seq_length=5, sequence=bytes(3), quality=bytes([10, 15, 20, 14, 30]))
    assert get_score(record) == 65


def test_get_score_empty_quality():
    assert get_score(BamRecord()) == 0


def test_get_score_missing_quality_bytes_count():
    record = BamRecord(seq_length=2, sequence=bytes(1), quality=bytes([0xFF, 0xFF]))
    assert get_score(record) == 510