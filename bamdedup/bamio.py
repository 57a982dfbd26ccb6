"""Reading and writing BAM files and sorted metadata chunks."""

from __future__ import annotations

import enum
import gzip
import os
import struct
import tempfile
import zlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, NamedTuple

import lz4.frame

from .metadata import Metadata

FLAG_OFFSET = 12
"""Byte offset of the flag field used by :func:`toggle_duplicate_flag`."""

DUPLICATE_FLAG = 0x400

_BAM_MAGIC = b"BAM\x01"
_CIGAR_KINDS = "MIDNSHP=X"
_REFERENCE_KINDS = frozenset("MDN=X")
_FIXED = struct.Struct("<iiBBHHHIiii")
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
_BGZF_HEADER = struct.Struct("<BBBBIBBHBBHH")
_BGZF_MAX_DATA = 0xFF00
_BGZF_EOF = bytes.fromhex("1f8b08040000000000ff0600424302001b0003000000000000000000")
_AUX_FIXED_SIZES = {
    b"A": 1, b"c": 1, b"C": 1,
    b"s": 2, b"S": 2,
    b"i": 4, b"I": 4, b"f": 4,
}


class BamFormatError(ValueError):
    """Raised when BAM data is malformed or truncated."""


class Flag(enum.IntFlag):
    """SAM/BAM record flag bits."""

    PAIRED = 0x1
    PROPER_PAIR = 0x2
    UNMAPPED = 0x4
    MATE_UNMAPPED = 0x8
    REVERSE = 0x10
    MATE_REVERSE = 0x20
    FIRST = 0x40
    LAST = 0x80
    SECONDARY = 0x100
    QC_FAIL = 0x200
    DUPLICATE = 0x400
    SUPPLEMENTARY = 0x800


class CigarOp(NamedTuple):
    """One CIGAR operation, such as ``CigarOp("M", 50)``."""

    kind: str
    length: int

    @property
    def consumes_reference(self) -> bool:
        return self.kind in _REFERENCE_KINDS


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining:
        piece = stream.read(remaining)
        if not piece:
            raise BamFormatError(f"unexpected end of data: {remaining} bytes missing")
        parts.append(piece)
        remaining -= len(piece)
    return b"".join(parts)


def _read_int32(stream: BinaryIO) -> int:
    return _INT32.unpack(_read_exact(stream, 4))[0]


@dataclass
class BamHeader:
    """The SAM header text and reference list of a BAM file."""

    text: str = ""
    references: list[tuple[str, int]] = field(default_factory=list)

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> BamHeader:
        """Parse a header from a decompressed BAM stream."""
        if _read_exact(stream, 4) != _BAM_MAGIC:
            raise BamFormatError("not a BAM stream: bad magic")
        l_text = _read_int32(stream)
        if l_text < 0:
            raise BamFormatError("negative header text length")
        text = _read_exact(stream, l_text).decode("utf-8", "surrogateescape")
        n_ref = _read_int32(stream)
        if n_ref < 0:
            raise BamFormatError("negative reference count")
        references = []
        for _ in range(n_ref):
            l_name = _read_int32(stream)
            if l_name < 1:
                raise BamFormatError("invalid reference name length")
            name = _read_exact(stream, l_name).rstrip(b"\0").decode("utf-8", "surrogateescape")
            references.append((name, _read_int32(stream)))
        return cls(text=text, references=references)

    def to_bytes(self) -> bytes:
        """Serialize to the uncompressed BAM header form."""
        text = self.text.encode("utf-8", "surrogateescape")
        parts = [_BAM_MAGIC, _INT32.pack(len(text)), text, _INT32.pack(len(self.references))]
        for name, length in self.references:
            raw = name.encode("utf-8", "surrogateescape") + b"\0"
            parts += [_INT32.pack(len(raw)), raw, _INT32.pack(length)]
        return b"".join(parts)

    def read_group_libraries(self) -> dict[str, str]:
        """Map each read-group ID to its library, "unknown" when absent."""
        libraries: dict[str, str] = {}
        for line in self.text.split("\n"):
            line = line.rstrip("\r\0")
            if not line.startswith("@RG\t"):
                continue
            fields = dict(
                item.split(":", 1) for item in line.split("\t")[1:] if ":" in item
            )
            rg_id = fields.get("ID")
            if rg_id is not None:
                libraries.setdefault(rg_id, fields.get("LB", "unknown"))
        return libraries


@dataclass
class BamRecord:
    """One alignment record.

    ``pos`` is 0-based, -1 when absent. ``sequence`` holds the packed
    4-bit bases, ``quality`` the raw Phred scores, ``data`` the raw
    auxiliary fields.
    """

    name: bytes = b"*"
    flags: int = 0
    ref_id: int = -1
    pos: int = -1
    mapq: int = 255
    bin: int = 4680
    cigar: list[CigarOp] = field(default_factory=list)
    next_ref_id: int = -1
    next_pos: int = -1
    tlen: int = 0
    seq_length: int = 0
    sequence: bytes = b""
    quality: bytes = b""
    data: bytes = b""

    @classmethod
    def from_bytes(cls, data: bytes) -> BamRecord:
        """Parse a record including its leading block size."""
        view = memoryview(data)
        if len(view) < 4:
            raise BamFormatError("record too short")
        (block_size,) = _INT32.unpack_from(view, 0)
        if block_size < _FIXED.size or len(view) < 4 + block_size:
            raise BamFormatError("record block size does not match data")
        (ref_id, pos, l_name, mapq, bin_, n_cigar, flags,
         l_seq, next_ref_id, next_pos, tlen) = _FIXED.unpack_from(view, 4)
        offset = 4 + _FIXED.size
        end = 4 + block_size
        seq_bytes = (l_seq + 1) // 2
        if offset + l_name + 4 * n_cigar + seq_bytes + l_seq > end:
            raise BamFormatError("record fields exceed block size")
        name = bytes(view[offset:offset + l_name]).rstrip(b"\0")
        offset += l_name
        cigar = []
        for (raw,) in _UINT32.iter_unpack(view[offset:offset + 4 * n_cigar]):
            code = raw & 0xF
            if code >= len(_CIGAR_KINDS):
                raise BamFormatError(f"invalid CIGAR operation code {code}")
            cigar.append(CigarOp(_CIGAR_KINDS[code], raw >> 4))
        offset += 4 * n_cigar
        sequence = bytes(view[offset:offset + seq_bytes])
        offset += seq_bytes
        quality = bytes(view[offset:offset + l_seq])
        offset += l_seq
        return cls(
            name=name,
            flags=flags,
            ref_id=ref_id,
            pos=pos,
            mapq=mapq,
            bin=bin_,
            cigar=cigar,
            next_ref_id=next_ref_id,
            next_pos=next_pos,
            tlen=tlen,
            seq_length=l_seq,
            sequence=sequence,
            quality=quality,
            data=bytes(view[offset:end]),
        )

    def to_bytes(self) -> bytes:
        """Serialize including the leading block size."""
        if len(self.sequence) != (self.seq_length + 1) // 2:
            raise ValueError("packed sequence length does not match seq_length")
        if len(self.quality) != self.seq_length:
            raise ValueError("quality length does not match seq_length")
        name = self.name + b"\0"
        cigar = b"".join(
            _UINT32.pack(op.length << 4 | _CIGAR_KINDS.index(op.kind)) for op in self.cigar
        )
        body = b"".join((
            _FIXED.pack(
                self.ref_id, self.pos, len(name), self.mapq, self.bin,
                len(self.cigar), self.flags, self.seq_length,
                self.next_ref_id, self.next_pos, self.tlen,
            ),
            name,
            cigar,
            self.sequence,
            self.quality,
            self.data,
        ))
        return _INT32.pack(len(body)) + body

    def read_group(self) -> str | None:
        """Value of the RG auxiliary field, if present as a string."""
        data = self.data
        offset = 0
        while offset + 3 <= len(data):
            tag = data[offset:offset + 2]
            kind = data[offset + 2:offset + 3]
            offset += 3
            if kind in (b"Z", b"H"):
                end = data.find(b"\0", offset)
                if end < 0:
                    raise BamFormatError("unterminated string field")
                if tag == b"RG" and kind == b"Z":
                    return data[offset:end].decode("utf-8", "surrogateescape")
                offset = end + 1
            elif kind in _AUX_FIXED_SIZES:
                offset += _AUX_FIXED_SIZES[kind]
            elif kind == b"B":
                if offset + 5 > len(data):
                    raise BamFormatError("truncated array field")
                sub = data[offset:offset + 1]
                if sub not in _AUX_FIXED_SIZES or sub == b"A":
                    raise BamFormatError(f"invalid array subtype {sub!r}")
                (count,) = _UINT32.unpack_from(data, offset + 1)
                offset += 5 + count * _AUX_FIXED_SIZES[sub]
            else:
                raise BamFormatError(f"invalid field type {kind!r}")
        return None


class BamReader:
    """Iterate over the records of a BAM file; ``header`` is read on open."""

    def __init__(self, path):
        self._stream = gzip.open(path, "rb")
        try:
            self.header = BamHeader.from_stream(self._stream)
        except BaseException:
            self._stream.close()
            raise

    def __iter__(self) -> Iterator[BamRecord]:
        while True:
            head = self._stream.read(4)
            if not head:
                return
            if len(head) < 4:
                head += _read_exact(self._stream, 4 - len(head))
            (block_size,) = _INT32.unpack(head)
            if block_size < 0:
                raise BamFormatError("negative record block size")
            yield BamRecord.from_bytes(head + _read_exact(self._stream, block_size))

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> BamReader:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class BgzfWriter:
    """Write data as BGZF blocks, ending with the standard EOF block."""

    def __init__(self, path):
        self._file = open(path, "wb")
        self._buffer = bytearray()
        self._closed = False

    def _emit_block(self, chunk: bytes) -> None:
        compressor = zlib.compressobj(6, zlib.DEFLATED, -15)
        cdata = compressor.compress(chunk) + compressor.flush()
        bsize = _BGZF_HEADER.size + len(cdata) + 8 - 1
        self._file.write(
            _BGZF_HEADER.pack(0x1F, 0x8B, 8, 4, 0, 0, 0xFF, 6, ord("B"), ord("C"), 2, bsize)
        )
        self._file.write(cdata)
        self._file.write(struct.pack("<II", zlib.crc32(chunk), len(chunk)))

    def write(self, data) -> int:
        """Buffer ``data``, emitting full blocks as they fill."""
        if self._closed:
            raise ValueError("write to closed BGZF writer")
        self._buffer += data
        while len(self._buffer) >= _BGZF_MAX_DATA:
            self._emit_block(bytes(self._buffer[:_BGZF_MAX_DATA]))
            del self._buffer[:_BGZF_MAX_DATA]
        return len(data)

    def flush(self) -> None:
        """End the current block and flush it to the file."""
        if self._buffer:
            self._emit_block(bytes(self._buffer))
            self._buffer.clear()
        self._file.flush()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._file.write(_BGZF_EOF)
        self._file.close()
        self._closed = True

    def __enter__(self) -> BgzfWriter:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def toggle_duplicate_flag(data: bytearray, is_duplicate: bool) -> int | None:
    """Set or clear the duplicate bit at FLAG_OFFSET in place.

    Returns the new flag value, or None if ``data`` is too short.
    """
    if len(data) < FLAG_OFFSET + 2:
        return None
    flag = int.from_bytes(data[FLAG_OFFSET:FLAG_OFFSET + 2], "little")
    new_flag = flag | DUPLICATE_FLAG if is_duplicate else flag & ~DUPLICATE_FLAG
    data[FLAG_OFFSET:FLAG_OFFSET + 2] = new_flag.to_bytes(2, "little")
    return new_flag


def is_duplicate(idx: int, dup_mask) -> bool:
    """Whether record index ``idx`` is in the duplicate set."""
    return idx in dup_mask


def write_header(writer: BgzfWriter, header: BamHeader) -> None:
    """Write the header and end its BGZF block."""
    writer.write(header.to_bytes())
    writer.flush()


def record_to_bytes(record: BamRecord) -> bytearray:
    """Serialized record bytes, mutable for in-place flag edits."""
    return bytearray(record.to_bytes())


def save_chunk(chunk: Iterable[Metadata], directory) -> Path:
    """Sort ``chunk`` and store it LZ4-compressed in a new file in ``directory``."""
    fd, name = tempfile.mkstemp(suffix=".lz4", dir=directory)
    os.close(fd)
    path = Path(name)
    with lz4.frame.open(path, mode="wb") as out:
        for item in sorted(chunk):
            item.write_to(out)
    return path


def iter_chunk(path) -> Iterator[Metadata]:
    """Yield the records stored in a chunk file, in stored order."""
    with lz4.frame.open(path, mode="rb") as stream:
        while (item := Metadata.read_from(stream)) is not None:
            yield item