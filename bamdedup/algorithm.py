"""Duplicate detection consistent with Sambamba's markdup."""

from __future__ import annotations

from collections.abc import Collection, MutableSet, Sequence
from itertools import groupby

from .bamio import BamRecord, Flag
from .metadata import Metadata

_CLIP_KINDS = frozenset("SH")
_MIN_SCORED_QUALITY = 15


def _clipped_length(ops) -> int:
    """Total length of the clip operations at the start of ``ops``."""
    total = 0
    for op in ops:
        if op.kind not in _CLIP_KINDS:
            break
        total += op.length
    return total


def get_5p_pos(record: BamRecord) -> int:
    """0-based 5' position of a read, including clipped bases; -1 if unplaced.

    Forward reads give the alignment start minus leading clips; reverse
    reads give the alignment end plus trailing clips.
    """
    start = record.pos
    if start < 0:
        return -1
    if not record.flags & Flag.REVERSE:
        return start - _clipped_length(record.cigar)
    ref_span = sum(op.length for op in record.cigar if op.consumes_reference)
    return start + ref_span + _clipped_length(reversed(record.cigar))


def get_score(record: BamRecord) -> int:
    """Sum of the base qualities that are at least 15."""
    return sum(q for q in record.quality if q >= _MIN_SCORED_QUALITY)


def identify_dups(
    group: Sequence[Metadata],
    mask: MutableSet[int],
    pe_second_ends: Collection[tuple[int, int, int, int]],
) -> tuple[int, int, int]:
    """Mark duplicates among reads sharing a position.

    Indices of duplicate reads are added to ``mask``. Returns the counts
    ``(orphan, pe, se_only)`` of reads marked in each category.
    """
    if not group:
        return 0, 0, 0

    pes = [m for m in group if m.ref_id2 != -1]
    ses = [m for m in group if m.ref_id2 == -1]
    fragments = [m for m in ses if m.paired_end == 0]
    paired_ses = [m for m in ses if m.paired_end == 1]

    first = group[0]
    has_second_end = (first.lib_id, first.ref_id1, first.pos1, first.rev1) in pe_second_ends

    total = len(fragments) + len(paired_ses) + len(pes) + int(has_second_end)
    seen_paired_read = bool(paired_ses) or bool(pes) or has_second_end

    orphan_marked = pe_marked = se_only_marked = 0

    if total >= 2 and fragments:
        if seen_paired_read:
            for fragment in fragments:
                mask.add(fragment.idx1)
                orphan_marked += 1
        elif len(fragments) >= 2:
            best = fragments[0]
            for fragment in fragments[1:]:
                if fragment.score > best.score:
                    best = fragment
            for fragment in fragments:
                if fragment is not best:
                    mask.add(fragment.idx1)
                    se_only_marked += 1

    if len(pes) >= 2:
        for _, run in groupby(pes, key=lambda m: (m.rev2, m.ref_id2, m.pos2)):
            members = list(run)
            best = members[0]
            for member in members[1:]:
                if member.score >= best.score:
                    best = member
            for member in members:
                if member is not best:
                    mask.add(member.idx1)
                    mask.add(member.idx2)
                    pe_marked += 2

    return orphan_marked, pe_marked, se_only_marked