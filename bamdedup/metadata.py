"""Compact per-read records used to group and compare duplicate candidates."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

_LAYOUT = struct.Struct("<iiiBBiiIQQB")


def _read_up_to(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, stopping early only at end of stream."""
    parts = []
    remaining = size
    while remaining:
        piece = stream.read(remaining)
        if not piece:
            break
        parts.append(piece)
        remaining -= len(piece)
    return b"".join(parts)


@dataclass(frozen=True, order=True, slots=True)
class Metadata:
    """Position and score of a read or read pair.

    Instances order field by field: library, first reference, first
    position, first strand, second strand, second reference, second
    position, score, then the read indices.
    """

    lib_id: int
    ref_id1: int
    pos1: int
    rev1: int
    rev2: int
    ref_id2: int
    pos2: int
    score: int
    idx1: int
    idx2: int
    paired_end: int  # 0 = fragment, 1 = paired read

    @classmethod
    def new_se(cls, lib_id, ref_id1, pos1, rev1, score, idx1) -> Metadata:
        """Metadata for a single read without a mapped mate."""
        return cls(
            lib_id=lib_id,
            ref_id1=ref_id1,
            pos1=pos1,
            rev1=rev1,
            rev2=0,
            ref_id2=-1,
            pos2=0,
            score=score,
            idx1=idx1,
            idx2=0,
            paired_end=0,
        )

    @classmethod
    def new_pe(
        cls, lib_id, ref_id1, pos1, rev1, ref_id2, pos2, rev2, score, idx1, idx2
    ) -> Metadata:
        """Metadata for a read pair with both ends mapped."""
        return cls(
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

    def write_to(self, stream: BinaryIO) -> None:
        """Write the little-endian binary form to ``stream``."""
        stream.write(
            _LAYOUT.pack(
                self.lib_id,
                self.ref_id1,
                self.pos1,
                self.rev1,
                self.rev2,
                self.ref_id2,
                self.pos2,
                self.score,
                self.idx1,
                self.idx2,
                self.paired_end,
            )
        )

    @classmethod
    def read_from(cls, stream: BinaryIO) -> Metadata | None:
        """Read one record; ``None`` at end of stream.

        Raises EOFError if the stream ends inside a record.
        """
        data = _read_up_to(stream, _LAYOUT.size)
        if len(data) < 4:
            return None
        if len(data) < _LAYOUT.size:
            raise EOFError("metadata record is truncated")
        return cls(*_LAYOUT.unpack(data))

    @classmethod
    def binary_size(cls) -> int:
        """Size in bytes of one serialized record."""
        return _LAYOUT.size