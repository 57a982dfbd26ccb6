# bamdedup

bamdedup finds duplicate reads in a BAM file and writes a copy of the file.
In the copy, the SAM DUPLICATE flag (`0x400`) is set on each duplicate and
cleared on every other primary record. You can also ask it to drop the
duplicates from the copy. The duplicates it picks agree with Sambamba's
`markdup`.

## How duplicates are chosen

Reads are grouped by four values: library, reference, 5' position and
strand. The 5' position counts soft- and hard-clipped bases. For a
reverse-strand read it is the end of the alignment plus any trailing clips.

Within each group:

- **Fragments and paired reads together.** Single-end fragments are marked
  when the group also holds paired reads. This includes the case where the
  second end of a pair falls at the group's position. These marks are
  counted as *orphans*.
- **Fragments only.** The fragment with the highest score is kept and the
  others are marked.
- **Pairs.** Pairs whose mates share the same position and strand are
  reduced to the pair with the highest score. Both ends of every other pair
  are marked.

A read's score is the sum of its base qualities that are at least 15. A
pair's score is the sum of the scores of its two reads.

Libraries come from the `LB` field of the header's `@RG` lines. A record is
matched to its library through its `RG` tag. Read groups that have no `LB`
share the library name `unknown`. Records without a known read group count
as library 0.

Unmapped, secondary and supplementary records are never marked. Secondary
and supplementary records are written out unchanged.

## Installation

```
pip install .
```

## Usage

```
bamdedup -i input.bam -o marked.bam
```

| Option | Meaning |
| --- | --- |
| `-i`, `--input` | BAM file to read (required) |
| `-o`, `--output` | BAM file to write (required) |
| `-r`, `--remove-duplicates` | Leave duplicates out of the output instead of flagging them |
| `-t`, `--threads` | Thread count to report (default: number of CPUs) |
| `--batch-size` | Records per sorted temporary chunk (default 2000000) |
| `--tmp-dir` | Directory for the temporary chunk files |
| `--single-threaded` | Report a thread count of 1 |

The input is read in batches. Each batch is sorted and written to an
LZ4-compressed temporary file. The batches are then merged to form the
position groups, so memory use stays bounded on large inputs.

Progress and counts are written to standard error. The command exits with
status 1 if reading or writing fails.

## Use from Python

```python
from bamdedup.args import parse_args
from bamdedup.markdup import run_markdup

duplicates = run_markdup(parse_args(["-i", "input.bam", "-o", "marked.bam"]))
```

`run_markdup` returns a frozenset holding the indices of the duplicate
records.

The building blocks are also public:

- **`bamdedup.algorithm`**
  - `identify_dups` marks the duplicates in one position group.
  - `get_5p_pos` computes a record's 5' position.
  - `get_score` computes a record's score.
- **`bamdedup.bamio`**
  - `BamReader` iterates over the records of a BAM file.
  - `BgzfWriter` writes BGZF-compressed output.
  - `BamHeader` and `BamRecord` parse and serialize headers and records.
  - `toggle_duplicate_flag` sets or clears the flag in a record's raw bytes.
  - `save_chunk` and `iter_chunk` write and read sorted chunk files.
- **`bamdedup.metadata`**
  - `Metadata` holds a read or a pair in sortable form, with a 43-byte binary encoding.
- **`bamdedup.markdup`**
  - `build_library_map` numbers the libraries named in a header.
- **`bamdedup.utils`**
  - `format_duration` and `format_duration_verbose` format elapsed times.

## What it does not do

- All work runs in one thread. The `--threads` and `--single-threaded`
  options only change the thread count shown in the progress output.
- It reads and writes BAM only. It does not handle SAM or CRAM, and it
  does not create or update index files.

## Tests

```
pip install .[test]
pytest
```