from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
import numpy as np
import numpy.typing as npt
from typing import Iterator, List, NamedTuple, Sequence, Tuple, TypeAlias, Union
import sys

from checksums import ALL_CHECKSUMS, Block, Blocks, Checksum, checksum_blocks

# Type alias for the corpus blocks are carved from: a 1D uint8 array that is
#    never written to during a run.
SourceBuffer: TypeAlias = npt.NDArray[np.uint8]
# 256-entry histogram of digest values, indexed by the digest byte.
FrequencyTable: TypeAlias = npt.NDArray[np.int64]

BLOCK_ROWS = 8
BLOCK_COLS = 16
BLOCK_SIZE = BLOCK_ROWS * BLOCK_COLS
NUM_BLOCKS = 10000

# Blocks per worker task. Each task owns a private (CHUNK_BLOCKS, L) matrix.
CHUNK_BLOCKS = 500

INPUT_PATH = "sample.png"
COVERAGE_CSV = "coverage_adjacent_2bit.csv"

pool = ThreadPoolExecutor()


class CoverageRecord(NamedTuple):
    """Detection result of one checksum over the whole block set."""
    name: str
    detected: int
    total: int
    percentage: float


def make_record(variant: Checksum, detected: int, total: int) -> CoverageRecord:
    if total <= 0:
        raise ValueError(f"total must be positive, got {total}")
    return CoverageRecord(variant.display_name, detected, total, 100.0 * detected / total)


def as_source(data: Union[bytes, bytearray, Sequence[int], SourceBuffer]) -> SourceBuffer:
    """View raw bytes as a read-only uint8 source buffer."""
    if isinstance(data, (bytes, bytearray)):
        source = np.frombuffer(bytes(data), dtype=np.uint8)
    else:
        source = np.array(data, dtype=np.uint8)
    source.setflags(write=False)
    return source


def check_source(source: SourceBuffer, block_size: int = BLOCK_SIZE) -> None:
    """Enforce the one fatal precondition: the source holds at least one block."""
    if block_size <= 0:
        raise ValueError(f"block_size must be positive, got {block_size}")
    if len(source) < block_size:
        raise ValueError(
            f"source is too small: {len(source)} bytes, need at least {block_size}"
        )


def load_source(path: str, block_size: int = BLOCK_SIZE) -> SourceBuffer:
    with open(path, "rb") as f:
        source = as_source(f.read())
    check_source(source, block_size)
    return source


def build_blocks(
    source: SourceBuffer, start: int, stop: int, block_size: int = BLOCK_SIZE
) -> Blocks:
    """Carve blocks start..stop-1 out of the source, wrapping around its end.

    Byte k of block i is source[(i * block_size + k) % len(source)].

    Returns:
        A fresh, writable (stop - start, block_size) uint8 matrix.
    """
    block_idx = np.arange(start, stop, dtype=np.int64)[:, np.newaxis]
    offsets = np.arange(block_size, dtype=np.int64)
    return source[(block_idx * block_size + offsets) % len(source)]


def build_block(source: SourceBuffer, block_idx: int, block_size: int = BLOCK_SIZE) -> Block:
    return build_blocks(source, block_idx, block_idx + 1, block_size)[0]


def flip_bit(blocks: Union[Block, Blocks], bitpos: int) -> None:
    """Toggle one bit in place, in every block of the batch.

    Applying the same flip twice restores the original contents.
    """
    byte, bit = divmod(bitpos, 8)
    blocks[..., byte] ^= np.uint8(1 << bit)


@contextmanager
def adjacent_flip(blocks: Union[Block, Blocks], bitpos: int) -> Iterator[Union[Block, Blocks]]:
    """Corrupt bits bitpos and bitpos+1 for the duration of the block.

    Both bits are flipped back on exit, including when the body raises, so the
    same buffer can be reused for every position of a sweep.
    """
    total_bits = blocks.shape[-1] * 8
    if bitpos < 0 or bitpos + 1 >= total_bits:
        raise ValueError(
            f"adjacent pair ({bitpos}, {bitpos + 1}) is outside a {total_bits}-bit block"
        )
    flip_bit(blocks, bitpos)
    flip_bit(blocks, bitpos + 1)
    try:
        yield blocks
    finally:
        flip_bit(blocks, bitpos)
        flip_bit(blocks, bitpos + 1)


def sweep_adjacent_2bit(blocks: Blocks, variant: Checksum) -> Tuple[int, int]:
    """Exhaustively test every adjacent 2-bit corruption of every block.

    The blocks are cloned once; each start position 0..8L-2 is corrupted,
    measured against the uncorrupted digest, then restored. A pair made of the
    last bit and the first bit is not part of the fault model.

    Returns:
        (detected, total) where total = rows * (8L - 1).
    """
    corrupted = np.array(blocks, dtype=np.uint8, copy=True)
    if corrupted.ndim == 1:
        corrupted = corrupted[np.newaxis, :]
    baseline = checksum_blocks(variant, corrupted)

    positions = corrupted.shape[-1] * 8 - 1
    detected = 0
    for p in range(positions):
        with adjacent_flip(corrupted, p):
            detected += int(np.count_nonzero(checksum_blocks(variant, corrupted) != baseline))

    return detected, positions * corrupted.shape[0]


def _chunks(num_blocks: int, chunk_blocks: int) -> List[Tuple[int, int]]:
    if chunk_blocks <= 0:
        raise ValueError(f"chunk_blocks must be positive, got {chunk_blocks}")
    return [(start, min(start + chunk_blocks, num_blocks)) for start in range(0, num_blocks, chunk_blocks)]


def evaluate_all(
    source: SourceBuffer,
    variants: Sequence[Checksum] = ALL_CHECKSUMS,
    *,
    block_size: int = BLOCK_SIZE,
    num_blocks: int = NUM_BLOCKS,
    chunk_blocks: int = CHUNK_BLOCKS,
) -> List[CoverageRecord]:
    """Compute adjacent 2-bit detection coverage for several checksums.

    Work is split into (variant, chunk of blocks) tasks and run on the pool.
    Every task builds its own blocks and returns its own counts; the counts
    of each variant are summed once all tasks are done.

    Returns:
        One CoverageRecord per variant, in the order given.
    """
    check_source(source, block_size)
    if num_blocks <= 0:
        raise ValueError(f"num_blocks must be positive, got {num_blocks}")
    chunks = _chunks(num_blocks, chunk_blocks)

    def process_chunk(task: Tuple[int, Tuple[int, int]]) -> Tuple[int, int, int]:
        """Sweep one chunk for one variant; returns (variant index, detected, total)."""
        variant_idx, (start, stop) = task
        blocks = build_blocks(source, start, stop, block_size)
        detected, total = sweep_adjacent_2bit(blocks, variants[variant_idx])
        return variant_idx, detected, total

    tasks = [(i, chunk) for i in range(len(variants)) for chunk in chunks]
    detected = [0] * len(variants)
    total = [0] * len(variants)
    for variant_idx, chunk_detected, chunk_total in pool.map(process_chunk, tasks):
        detected[variant_idx] += chunk_detected
        total[variant_idx] += chunk_total

    return [make_record(v, detected[i], total[i]) for i, v in enumerate(variants)]


def detection_coverage_adjacent_2bit(
    source: SourceBuffer,
    variant: Checksum,
    *,
    block_size: int = BLOCK_SIZE,
    num_blocks: int = NUM_BLOCKS,
    chunk_blocks: int = CHUNK_BLOCKS,
) -> CoverageRecord:
    """Coverage of a single checksum; see evaluate_all."""
    return evaluate_all(
        source,
        [variant],
        block_size=block_size,
        num_blocks=num_blocks,
        chunk_blocks=chunk_blocks,
    )[0]


def frequency_table(
    source: SourceBuffer,
    variant: Checksum,
    *,
    block_size: int = BLOCK_SIZE,
    num_blocks: int = NUM_BLOCKS,
) -> FrequencyTable:
    """Count how often each digest value occurs over the uncorrupted blocks."""
    check_source(source, block_size)
    digests = checksum_blocks(variant, build_blocks(source, 0, num_blocks, block_size))
    return np.bincount(digests, minlength=256).astype(np.int64)


def main(
    input_path: str = INPUT_PATH,
    output_dir: str = ".",
    *,
    block_size: int = BLOCK_SIZE,
    num_blocks: int = NUM_BLOCKS,
    chunk_blocks: int = CHUNK_BLOCKS,
) -> int:
    """Run the full evaluation and write histograms and the coverage CSV.

    Returns:
        0 on success, 1 if the input is unusable or any output failed.
    """
    # Imported here so the core can be used without the plotting stack.
    import report

    try:
        source = load_source(input_path, block_size)
    except (OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(f"Loaded {len(source)} bytes from {input_path}; "
          f"{num_blocks} blocks of {block_size} bytes.")

    tables = {
        v: frequency_table(source, v, block_size=block_size, num_blocks=num_blocks)
        for v in ALL_CHECKSUMS
    }
    failed = report.save_histograms(tables, output_dir)

    print("\nRunning adjacent 2-bit sweeps...")
    records = evaluate_all(
        source,
        ALL_CHECKSUMS,
        block_size=block_size,
        num_blocks=num_blocks,
        chunk_blocks=chunk_blocks,
    )
    for record in records:
        print(f"Coverage {record.name:<8}: {record.percentage:.6f}%")

    try:
        csv_path = report.save_coverages_csv(records, output_dir, COVERAGE_CSV)
    except OSError as e:
        print(f"error: could not write coverage table: {e}", file=sys.stderr)
        return 1
    print(f"Coverage table written to {csv_path}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
