"""Find duplicate reads in a BAM file and mark or remove them."""

from __future__ import annotations

import heapq
import sys
import tempfile
import time
from itertools import groupby
from operator import attrgetter
from pathlib import Path

from .algorithm import get_5p_pos, get_score, identify_dups
from .args import Args, effective_threads, parse_args
from .bamio import (
    DUPLICATE_FLAG,
    BamFormatError,
    BamHeader,
    BamReader,
    BgzfWriter,
    Flag,
    is_duplicate,
    iter_chunk,
    save_chunk,
    write_header,
)
from .metadata import Metadata
from .utils import format_duration

_SKIPPED = Flag.UNMAPPED | Flag.SECONDARY | Flag.SUPPLEMENTARY
_NOT_MARKED = Flag.SECONDARY | Flag.SUPPLEMENTARY
_group_key = attrgetter("lib_id", "ref_id1", "pos1", "rev1")


def _log(message: str, end: str = "\n") -> None:
    print(message, end=end, file=sys.stderr, flush=True)


def build_library_map(header: BamHeader) -> dict[str, int]:
    """Number the libraries of the header's read groups in order of appearance.

    Read groups without a library share the name "unknown".
    """
    libraries: dict[str, int] = {}
    for library in header.read_group_libraries().values():
        libraries.setdefault(library, len(libraries))
    return libraries


def _read_group_lib_ids(header: BamHeader) -> dict[str, int]:
    libraries = build_library_map(header)
    return {
        rg_id: libraries[library]
        for rg_id, library in header.read_group_libraries().items()
    }


def _collect_duplicates(args: Args, tmp_dir: Path) -> set[int]:
    """Scan the input once and return the indices of duplicate records."""
    find_start = time.monotonic()
    pe_count = se_count = unmatched_pairs = 0
    pending: dict[bytes, tuple[int, int, int, int, int, int]] = {}
    pe_second_ends: set[tuple[int, int, int, int]] = set()
    chunk: list[Metadata] = []
    chunk_files: list[Path] = []

    _log("finding positions of the duplicate reads in the file...")

    with BamReader(args.input) as reader:
        lib_ids = _read_group_lib_ids(reader.header)
        for index, record in enumerate(reader):
            flags = record.flags
            if flags & _SKIPPED:
                continue

            rg = record.read_group()
            lib_id = lib_ids.get(rg, 0) if rg is not None else 0
            pos = get_5p_pos(record)
            score = get_score(record)
            ref_id = record.ref_id
            rev = 1 if flags & Flag.REVERSE else 0

            if flags & Flag.PAIRED and not flags & Flag.MATE_UNMAPPED:
                name = record.name
                if name in (b"", b"*"):
                    raise BamFormatError(f"record {index} has no name")
                mate = pending.pop(name, None)
                if mate is None:
                    pending[name] = (lib_id, ref_id, pos, rev, score, index)
                else:
                    m_lib, m_ref, m_pos, m_rev, m_score, m_idx = mate
                    if ref_id < m_ref or (ref_id == m_ref and pos < m_pos):
                        first = (ref_id, pos, rev, index)
                        second = (m_ref, m_pos, m_rev, m_idx)
                    else:
                        first = (m_ref, m_pos, m_rev, m_idx)
                        second = (ref_id, pos, rev, index)
                    pe_second_ends.add((m_lib, second[0], second[1], second[2]))
                    chunk.append(
                        Metadata.new_pe(
                            m_lib,
                            first[0], first[1], first[2],
                            second[0], second[1], second[2],
                            score + m_score,
                            first[3], second[3],
                        )
                    )
                    pe_count += 1
            else:
                chunk.append(Metadata.new_se(lib_id, ref_id, pos, rev, score, index))
                se_count += 1

            if len(chunk) >= args.batch_size:
                chunk_files.append(save_chunk(chunk, tmp_dir))
                chunk = []

    for lib, ref, pos, rev, score, idx in pending.values():
        chunk.append(
            Metadata(
                lib_id=lib, ref_id1=ref, pos1=pos, rev1=rev,
                rev2=0, ref_id2=-1, pos2=0, score=score,
                idx1=idx, idx2=0, paired_end=1,
            )
        )
        se_count += 1
        unmatched_pairs += 1
    if chunk:
        chunk_files.append(save_chunk(chunk, tmp_dir))

    _log(f"  sorted {pe_count} end pairs")
    _log(f"     and {se_count} single ends (among them {unmatched_pairs} unmatched pairs)")

    _log("  collecting indices of duplicate reads... ", end="")
    collect_start = time.monotonic()
    dup_mask: set[int] = set()
    totals = [0, 0, 0]
    merged = heapq.merge(*(iter_chunk(path) for path in chunk_files))
    for _, run in groupby(merged, key=_group_key):
        counts = identify_dups(list(run), dup_mask, pe_second_ends)
        totals = [total + count for total, count in zip(totals, counts)]

    elapsed_ms = int((time.monotonic() - collect_start) * 1000)
    _log(f"done in {elapsed_ms} ms")
    _log(f"  found {len(dup_mask)} duplicates")
    _log(f"  (orphan={totals[0]}, pe={totals[1]}, se_only={totals[2]})")
    minutes, seconds = format_duration(time.monotonic() - find_start)
    _log(f"collected list of positions in {minutes} min {seconds} sec")
    return dup_mask


def _write_output(args: Args, dup_mask: set[int]) -> None:
    _log("marking duplicates...")
    write_start = time.monotonic()
    processed = 0
    with BamReader(args.input) as reader, BgzfWriter(args.output) as writer:
        write_header(writer, reader.header)
        for idx, record in enumerate(reader):
            processed += 1
            if not record.flags & _NOT_MARKED:
                duplicate = is_duplicate(idx, dup_mask)
                if duplicate and args.remove_duplicates:
                    continue
                if duplicate:
                    record.flags |= DUPLICATE_FLAG
                else:
                    record.flags &= ~DUPLICATE_FLAG
            writer.write(record.to_bytes())
    _log(f"wrote output in {time.monotonic() - write_start:.1f} sec")
    _log(f"  processed {processed} records")


def run_markdup(args: Args) -> frozenset[int]:
    """Mark duplicates of ``args.input`` into ``args.output``.

    Returns the indices of the records found to be duplicates.
    """
    total_start = time.monotonic()
    threads = effective_threads(args)
    mode = " (single-threaded mode)" if args.single_threaded else ""
    _log(f"bamdedup: using {threads} threads{mode}")

    with tempfile.TemporaryDirectory(prefix="markdup_", dir=args.tmp_dir) as tmp:
        dup_mask = _collect_duplicates(args, Path(tmp))
    _write_output(args, dup_mask)

    minutes, seconds = format_duration(time.monotonic() - total_start)
    _log(f"done in {minutes} min {seconds} sec")
    return frozenset(dup_mask)


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point; returns the process exit status."""
    args = parse_args(argv)
    try:
        run_markdup(args)
    except (OSError, ValueError, EOFError) as exc:
        _log(f"bamdedup: error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())