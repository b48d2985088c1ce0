"""Content-defined chunking driven by a Rabin rolling fingerprint."""

from __future__ import annotations

from collections.abc import Iterator
from typing import BinaryIO

# an irreducible polynomial of degree 63
POLY64 = 0xBFE6B8A5BF378D83

_READ_SIZE = 64 * 1024


def _poly_mod(value: int, polynomial: int, degree: int) -> int:
    """Remainder of carry-less division of ``value`` by ``polynomial``."""
    while value.bit_length() > degree:
        value ^= polynomial << (value.bit_length() - 1 - degree)
    return value


class RabinTable:
    """Lookup tables for a rolling Rabin fingerprint over a fixed window."""

    def __init__(self, polynomial: int = POLY64, window: int = 64) -> None:
        if window < 1:
            raise ValueError("window must be at least one byte")
        degree = polynomial.bit_length() - 1
        if degree < 8:
            raise ValueError("polynomial must have degree >= 8")
        self.polynomial = polynomial
        self.window = window
        self.degree = degree
        # reduces a value whose top byte sits at x^degree and above
        self.push = [
            (top << degree) ^ _poly_mod(top << degree, polynomial, degree) for top in range(256)
        ]
        # contribution of the byte leaving the window
        shift = 8 * window
        self.pop = [_poly_mod(byte << shift, polynomial, degree) for byte in range(256)]


class Chunker:
    """Splits a byte stream into chunks whose boundaries depend only on content.

    Iterating yields the chunks as ``bytes``; together they are the whole stream.
    """

    def __init__(
        self,
        stream: BinaryIO,
        table: RabinTable,
        min_size: int,
        avg_size: int,
        max_size: int,
    ) -> None:
        if min_size < 1:
            raise ValueError("minimum chunk size must be positive")
        if not min_size <= avg_size <= max_size:
            raise ValueError("chunk sizes must satisfy min <= avg <= max")
        bits = avg_size.bit_length() - 1
        if bits > table.degree:
            raise ValueError("average chunk size is too large for the polynomial")
        self._stream = stream
        self._table = table
        self.min_size = min_size
        self.avg_size = avg_size
        self.max_size = max_size
        self._mask = (1 << bits) - 1

    def __iter__(self) -> Iterator[bytes]:
        table = self._table
        push, pop, shift = table.push, table.pop, table.degree
        window_size = table.window
        window = bytearray(window_size)
        position = 0
        mask, min_size, max_size = self._mask, self.min_size, self.max_size

        fingerprint = 0
        length = 0
        pending = bytearray()
        while True:
            block = self._stream.read(_READ_SIZE)
            if not block:
                break
            start = 0
            for index, byte in enumerate(block):
                outgoing = window[position]
                window[position] = byte
                position += 1
                if position == window_size:
                    position = 0

                fingerprint = (fingerprint << 8) | byte
                fingerprint ^= push[fingerprint >> shift] ^ pop[outgoing]

                length += 1
                if length >= min_size and (fingerprint & mask == 0 or length >= max_size):
                    pending += block[start:index + 1]
                    yield bytes(pending)
                    pending.clear()
                    start = index + 1
                    length = 0
            pending += block[start:]

        if pending:
            yield bytes(pending)