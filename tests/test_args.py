from pathlib import Path

import pytest

from bamdedup.args import Args, effective_threads, num_cpus, parse_args


def test_args_default_threads():
    args = Args(
        input="test.bam",
        output="out.bam",
        remove_duplicates=False,
        threads=4,
        batch_size=2_000_000,
        tmp_dir=None,
        single_threaded=False,
    )
    assert args.input == "test.bam"
    assert effective_threads(args) == 4


def test_single_threaded_flag():
    args = Args(
        input="test.bam",
        output="out.bam",
        remove_duplicates=False,
        threads=8,
        batch_size=2_000_000,
        tmp_dir=None,
        single_threaded=True,
    )
    assert effective_threads(args) == 1


def test_num_cpus_positive():
    assert num_cpus() >= 1


def test_parse_defaults():
    args = parse_args(["-i", "in.bam", "-o", "out.bam"])
    assert args.input == "in.bam"
    assert args.output == "out.bam"
    assert args.remove_duplicates is False
    assert args.threads == num_cpus()
    assert args.batch_size == 2_000_000
    assert args.tmp_dir is None
    assert args.single_threaded is False


def test_parse_all_options():
    args = parse_args(
        [
            "--input", "a.bam",
            "--output", "b.bam",
            "-r",
            "-t", "3",
            "--batch-size", "10",
            "--tmp-dir", "/tmp/work",
            "--single-threaded",
        ]
    )
    assert args.remove_duplicates is True
    assert args.threads == 3
    assert args.batch_size == 10
    assert args.tmp_dir == Path("/tmp/work")
    assert effective_threads(args) == 1


def test_parse_missing_input():
    with pytest.raises(SystemExit):
        parse_args(["-o", "out.bam"])