"""
MIDI Bytes Core - Functional Core

Bounds-checked readers for the SMF container: fixed-width big-endian integers,
variable-length quantities, length-prefixed payloads, the ``MThd`` header and
the top-level chunk sequence.
No side effects: no printing, no file I/O, no logging.

SMF carries no redundant length checks of its own, so every read here fails
with TruncatedData instead of returning short data.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from midi_types import Header, InvalidHeader, NotAMidiFile, TruncatedData


HEADER_TAG = b"MThd"
TRACK_TAG = b"MTrk"
CHUNK_PREAMBLE_SIZE = 8
HEADER_DATA_SIZE = 6
HEADER_SIZE = CHUNK_PREAMBLE_SIZE + HEADER_DATA_SIZE

# SMPTE division high byte holds the negated frame rate; 29 means 29.97 drop-frame
SMPTE_FRAME_RATES = {24: 24.0, 25: 25.0, 29: 29.97, 30: 30.0}


# ============================================================================
# Byte Cursor
# ============================================================================

class ByteCursor:
    """Position-based accessors over an immutable byte buffer

    The cursor holds no position of its own: every read takes an offset and
    returns the value (plus the number of bytes consumed where that varies).
    ``end`` limits reads to a sub-range, e.g. one track chunk.
    """

    __slots__ = ("_data", "end")

    def __init__(self, data: bytes, end: Optional[int] = None):
        self._data = memoryview(data)
        length = len(self._data)
        self.end = length if end is None else min(end, length)

    def _check(self, offset: int, size: int) -> None:
        if offset < 0 or offset + size > self.end:
            raise TruncatedData(
                f"Read of {size} byte(s) at offset {offset} runs past end {self.end}",
                offset=offset,
            )

    def _uint(self, offset: int, size: int) -> int:
        self._check(offset, size)
        return int.from_bytes(self._data[offset:offset + size], "big", signed=False)

    def u8(self, offset: int) -> int:
        self._check(offset, 1)
        return self._data[offset]

    def u16(self, offset: int) -> int:
        return self._uint(offset, 2)

    def u24(self, offset: int) -> int:
        return self._uint(offset, 3)

    def u32(self, offset: int) -> int:
        return self._uint(offset, 4)

    def slice(self, offset: int, size: int) -> bytes:
        self._check(offset, size)
        return bytes(self._data[offset:offset + size])

    def tag(self, offset: int) -> bytes:
        """Four-byte chunk type tag"""
        return self.slice(offset, 4)

    def vlq(self, offset: int) -> Tuple[int, int]:
        """Decode a MIDI variable-length quantity

        Each byte contributes its low 7 bits, most significant first; the
        first byte with a clear high bit ends the value (inclusive).

        Args:
            offset: Offset of the first VLQ byte

        Returns:
            (value, encoded_length) tuple

        Raises:
            TruncatedData: If the buffer ends before the terminating byte
        """
        result = 0
        position = offset
        while True:
            byte = self.u8(position)
            result = result * 128 + (byte & 0x7F)
            position += 1
            if not byte & 0x80:
                return result, position - offset

    def var_bytes(self, offset: int) -> Tuple[bytes, int]:
        """Read a VLQ length followed by that many payload bytes

        Returns:
            (payload, total_bytes_consumed) tuple
        """
        length, length_size = self.vlq(offset)
        payload = self.slice(offset + length_size, length)
        return payload, length_size + length

    def var_string(self, offset: int) -> Tuple[str, int]:
        """Length-prefixed meta-event text, decoded as latin-1"""
        payload, consumed = self.var_bytes(offset)
        return payload.decode("latin-1"), consumed


# ============================================================================
# Header
# ============================================================================

def is_midi(data: bytes) -> bool:
    """Check the ``MThd`` signature without parsing anything else"""
    return bytes(data[:4]) == HEADER_TAG


def parse_division(division: int, halve_division: bool = False) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Split the raw division field into its timing mode

    Args:
        division: Raw 16-bit division value
        halve_division: Halve the tick resolution (files that play at double speed)

    Returns:
        (ticks_per_beat, frames_per_second, ticks_per_frame); unused fields are None
    """
    divisor = 2 if halve_division else 1

    if division & 0x8000:
        negated_rate = 256 - (division >> 8)
        ticks_per_frame = division & 0xFF
        if negated_rate not in SMPTE_FRAME_RATES or ticks_per_frame == 0:
            raise InvalidHeader(f"Unsupported SMPTE division 0x{division:04X}")
        return None, SMPTE_FRAME_RATES[negated_rate], ticks_per_frame / divisor

    if division == 0:
        raise InvalidHeader("Division must not be 0")
    return division / divisor, None, None


def read_header(data: bytes, halve_division: bool = False) -> Header:
    """Parse the ``MThd`` chunk at the start of the buffer

    Args:
        data: Raw file bytes
        halve_division: Halve the division before any decoding happens

    Returns:
        Parsed Header

    Raises:
        NotAMidiFile: If the signature is missing
        InvalidHeader: If format, division or header length are unusable
        TruncatedData: If the buffer ends inside the header
    """
    if not is_midi(data):
        raise NotAMidiFile("Missing MThd signature")

    cursor = ByteCursor(data)
    header_length = cursor.u32(4)
    if header_length < HEADER_DATA_SIZE:
        raise InvalidHeader(f"Header chunk too short: {header_length} bytes")

    smf_format = cursor.u16(8)
    track_count = cursor.u16(10)
    division = cursor.u16(12)

    if smf_format not in (0, 1, 2):
        raise InvalidHeader(f"Unsupported SMF format {smf_format}")

    ticks_per_beat, frames_per_second, ticks_per_frame = parse_division(division, halve_division)

    return Header(
        format=smf_format,
        track_count=track_count,
        division=division,
        ticks_per_beat=ticks_per_beat,
        frames_per_second=frames_per_second,
        ticks_per_frame=ticks_per_frame,
    )


def header_end(data: bytes) -> int:
    """Offset of the first chunk after ``MThd`` (14 for a standard header)"""
    return CHUNK_PREAMBLE_SIZE + ByteCursor(data).u32(4)


# ============================================================================
# Chunk Scanning
# ============================================================================

@dataclass(frozen=True)
class Chunk:
    """One top-level chunk: type tag and the byte range of its data"""
    tag: bytes
    data_start: int
    data_end: int

    @property
    def is_track(self) -> bool:
        return self.tag == TRACK_TAG


def iter_chunks(data: bytes, start: int = HEADER_SIZE) -> Iterator[Chunk]:
    """Walk the chunk sequence after the header

    Chunks of any type are yielded; consumers skip the ones they do not
    understand. Scanning stops once fewer bytes than a chunk preamble
    remain, so padding after the last chunk is ignored.
    
    Args:
        data: Raw file bytes
        start: Offset of the first chunk

    Yields:
        Chunk for every complete chunk preamble found; a chunk whose declared
        length runs past the file fails later, when its data is read
    """
    cursor = ByteCursor(data)
    offset = start
    while offset + CHUNK_PREAMBLE_SIZE <= cursor.end:
        tag = cursor.tag(offset)
        length = cursor.u32(offset + 4)
        data_start = offset + CHUNK_PREAMBLE_SIZE
        yield Chunk(tag=tag, data_start=data_start, data_end=data_start + length)
        offset = data_start + length


def iter_track_chunks(data: bytes, start: int = HEADER_SIZE) -> Iterator[Chunk]:
    """Only the ``MTrk`` chunks, in file order"""
    for chunk in iter_chunks(data, start):
        if chunk.is_track:
            yield chunk
