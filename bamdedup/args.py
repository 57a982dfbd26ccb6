"""Command-line options."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path


def num_cpus() -> int:
    """Number of available processors, or 4 when it cannot be found."""
    return os.cpu_count() or 4


@dataclass
class Args:
    """Options controlling a duplicate-marking run."""

    input: str
    output: str
    remove_duplicates: bool = False
    threads: int = field(default_factory=num_cpus)
    batch_size: int = 2_000_000
    tmp_dir: Path | None = None
    single_threaded: bool = False


def effective_threads(args: Args) -> int:
    """Thread count to use, honouring the single-threaded switch."""
    return 1 if args.single_threaded else args.threads


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bamdedup", description="Sambamba-consistent MarkDuplicates"
    )
    parser.add_argument("-i", "--input", required=True)
    parser.add_argument("-o", "--output", required=True)
    parser.add_argument("-r", "--remove-duplicates", action="store_true")
    parser.add_argument("-t", "--threads", type=int, default=num_cpus())
    parser.add_argument("--batch-size", type=int, default=2_000_000)
    parser.add_argument("--tmp-dir", type=Path, default=None)
    parser.add_argument(
        "--single-threaded",
        action="store_true",
        help="force single-threaded mode",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> Args:
    """Parse command-line arguments; exits with usage on error."""
    ns = _build_parser().parse_args(argv)
    return Args(
        input=ns.input,
        output=ns.output,
        remove_duplicates=ns.remove_duplicates,
        threads=ns.threads,
        batch_size=ns.batch_size,
        tmp_dir=ns.tmp_dir,
        single_threaded=ns.single_threaded,
    )