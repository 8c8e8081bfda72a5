import enum
import hashlib
import numpy as np
import numpy.typing as npt
from typing import Callable, Dict, Sequence, TypeAlias, Union

# A block is a 1D array of L uint8 values; a batch of blocks is a 2D array of
#    shape (rows, L) where every row is an independent block. All checksums
#    reduce along the last axis and return one uint8 digest per row.
Block: TypeAlias = npt.NDArray[np.uint8]
Blocks: TypeAlias = npt.NDArray[np.uint8]
Digests: TypeAlias = npt.NDArray[np.uint8]

# Type alias for a batch checksum: takes a (rows, L) matrix, returns rows digests
BatchOp: TypeAlias = Callable[[Blocks], Digests]


class Checksum(enum.Enum):
    """The closed set of one-byte checksums under evaluation.

    The value of each member is its display name in reports and file names.
    """
    SUM = "Sum"
    SUBTRACT = "Subtract"
    MULTIPLY = "Multiply"
    AND = "AND"
    OR = "OR"
    XOR = "XOR"
    XNOR = "XNOR"
    COMBINED = "F"
    SHA1 = "SHA1"
    MD5 = "MD5"
    SHA256 = "SHA256"

    @property
    def display_name(self) -> str:
        return self.value


def checksum_sum(blocks: Blocks) -> Digests:
    """Sum of all bytes, truncated to the low 8 bits."""
    return (np.sum(blocks, axis=-1, dtype=np.uint64) & np.uint64(0xFF)).astype(np.uint8)


def checksum_sub(blocks: Blocks) -> Digests:
    """First byte minus every following byte, low 8 bits of the result.

    Only the low byte survives, so the sign of intermediate values is irrelevant
    and the whole fold reduces to first - sum(rest).
    """
    first = blocks[..., 0].astype(np.int64)
    rest = np.sum(blocks[..., 1:], axis=-1, dtype=np.int64)
    return ((first - rest) & 0xFF).astype(np.uint8)


def checksum_mul(blocks: Blocks) -> Digests:
    # uint8 products wrap mod 256, which matches reducing after every step.
    return np.multiply.reduce(blocks, axis=-1, dtype=np.uint8)


def checksum_and(blocks: Blocks) -> Digests:
    return np.bitwise_and.reduce(blocks, axis=-1, dtype=np.uint8)


def checksum_or(blocks: Blocks) -> Digests:
    return np.bitwise_or.reduce(blocks, axis=-1, dtype=np.uint8)


def checksum_xor(blocks: Blocks) -> Digests:
    return np.bitwise_xor.reduce(blocks, axis=-1, dtype=np.uint8)


def checksum_xnor(blocks: Blocks) -> Digests:
    return np.invert(checksum_xor(blocks))


def checksum_f(blocks: Blocks) -> Digests:
    """Combined checksum: Sum ^ XOR ^ (AND + OR), with the addition wrapping."""
    s = checksum_sum(blocks)
    x = checksum_xor(blocks)
    a_plus_o = (
        checksum_and(blocks).astype(np.uint16) + checksum_or(blocks).astype(np.uint16)
    ) & 0xFF
    return (s ^ x ^ a_plus_o.astype(np.uint8)) & np.uint8(0xFF)


def _first_digest_byte(algorithm: str) -> BatchOp:
    """Build a batch checksum that keeps the first byte of a hashlib digest."""
    def op_func(blocks: Blocks) -> Digests:
        rows = np.ascontiguousarray(blocks).reshape(-1, blocks.shape[-1])
        out = np.fromiter(
            (hashlib.new(algorithm, row.tobytes()).digest()[0] for row in rows),
            dtype=np.uint8,
            count=rows.shape[0],
        )
        return out.reshape(blocks.shape[:-1])

    op_func.__name__ = f"checksum_{algorithm}"
    return op_func


_IMPLEMENTATIONS: Dict[Checksum, BatchOp] = {
    Checksum.SUM: checksum_sum,
    Checksum.SUBTRACT: checksum_sub,
    Checksum.MULTIPLY: checksum_mul,
    Checksum.AND: checksum_and,
    Checksum.OR: checksum_or,
    Checksum.XOR: checksum_xor,
    Checksum.XNOR: checksum_xnor,
    Checksum.COMBINED: checksum_f,
    Checksum.SHA1: _first_digest_byte("sha1"),
    Checksum.MD5: _first_digest_byte("md5"),
    Checksum.SHA256: _first_digest_byte("sha256"),
}

ALL_CHECKSUMS: tuple[Checksum, ...] = tuple(Checksum)


def checksum_blocks(variant: Checksum, blocks: Blocks) -> Digests:
    """Compute the digest of every block (row) in a batch.

    Args:
        variant: Which checksum to apply.
        blocks: A (rows, L) uint8 matrix, or a single 1D block.

    Returns:
        A uint8 array with one digest per row (a 0-d array for a single block).
    """
    if blocks.shape[-1] == 0:
        raise ValueError("blocks must contain at least one byte")
    return _IMPLEMENTATIONS[variant](blocks)


def checksum(variant: Checksum, block: Union[bytes, bytearray, Sequence[int], Block]) -> int:
    """Digest of a single block as a Python int in [0, 255]."""
    arr = np.asarray(
        np.frombuffer(block, dtype=np.uint8) if isinstance(block, (bytes, bytearray)) else block,
        dtype=np.uint8,
    )
    return int(checksum_blocks(variant, arr.reshape(1, -1))[0])
