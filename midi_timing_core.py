"""
MIDI Timing Core - Functional Core

Tempo map, time-signature map, tick → seconds conversion and BPM map
simplification. The TickClock is the single source of truth for every time
value the decoder attaches to an event.
No side effects: no printing, no file I/O, no logging.
"""

from bisect import bisect_right
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import mido  # type: ignore
import numpy as np  # type: ignore

from midi_types import (
    DEFAULT_METRONOME_INTERVAL,
    DEFAULT_MICROSECONDS_PER_QUARTER,
    DEFAULT_THIRTY_SECONDS_PER_QUARTER,
    DEFAULT_TIME_SIGNATURE,
    BpmMapEntry,
    Header,
    TempoChange,
    TimeSignatureChange,
)

Threshold = Union[str, int, float, Decimal]


# ============================================================================
# Tempo Calculations
# ============================================================================

def tempo_to_bpm(tempo_microseconds: int) -> float:
    """Convert MIDI tempo (microseconds per beat) to BPM

    Args:
        tempo_microseconds: Tempo in microseconds per quarter note

    Returns:
        Tempo in beats per minute
    """
    return 60_000_000 / tempo_microseconds


def bpm_to_tempo(bpm: float) -> int:
    """Convert BPM to MIDI tempo (microseconds per beat)

    Args:
        bpm: Beats per minute

    Returns:
        Tempo in microseconds per quarter note
    """
    return int(60_000_000 / bpm)


# ============================================================================
# Tempo Map
# ============================================================================

class TempoMap:
    """Tempo changes ordered ascending by tick

    Only explicit changes are stored. ``changes()`` adds the implicit 120 BPM
    entry at tick 0 when the first explicit change comes later (or there is
    none). Changes sharing a tick keep insertion order; the last one wins.
    """

    def __init__(self, changes: Iterable[TempoChange] = ()):
        self._explicit: List[TempoChange] = []
        self._ticks: List[int] = []
        self._low_water: Optional[int] = None
        for change in changes:
            self.add(change)

    def add(self, change: TempoChange) -> int:
        """Insert a change, returning its index among explicit changes"""
        index = bisect_right(self._ticks, change.tick)
        self._explicit.insert(index, change)
        self._ticks.insert(index, change.tick)
        if self._low_water is None or index < self._low_water:
            self._low_water = index
        return index

    def add_tempo(self, tick: int, microseconds_per_quarter: int) -> TempoChange:
        change = TempoChange(tick=tick, microseconds_per_quarter=microseconds_per_quarter)
        self.add(change)
        return change

    def take_low_water(self) -> Optional[int]:
        """Lowest index inserted since the last call (used by TickClock caches)"""
        low_water, self._low_water = self._low_water, None
        return low_water

    @property
    def explicit(self) -> Sequence[TempoChange]:
        return self._explicit

    @property
    def ticks(self) -> Sequence[int]:
        return self._ticks

    def changes(self) -> List[TempoChange]:
        if self._explicit and self._explicit[0].tick == 0:
            return list(self._explicit)
        return [TempoChange(0, DEFAULT_MICROSECONDS_PER_QUARTER)] + self._explicit

    def tempo_at(self, tick: int) -> int:
        """Microseconds per quarter note in effect at ``tick``"""
        index = bisect_right(self._ticks, tick)
        if index == 0:
            return DEFAULT_MICROSECONDS_PER_QUARTER
        return self._explicit[index - 1].microseconds_per_quarter

    def __len__(self) -> int:
        return len(self._explicit)

    def __iter__(self) -> Iterator[TempoChange]:
        return iter(self.changes())


# ============================================================================
# Time Signature Map
# ============================================================================

DEFAULT_TIME_SIGNATURE_CHANGE = TimeSignatureChange(
    tick=0,
    numerator=DEFAULT_TIME_SIGNATURE[0],
    denominator=DEFAULT_TIME_SIGNATURE[1],
    metronome_interval=DEFAULT_METRONOME_INTERVAL,
    thirty_seconds_per_quarter=DEFAULT_THIRTY_SECONDS_PER_QUARTER,
)


class TimeSignatureMap:
    """Time signature changes ordered ascending by tick"""

    def __init__(self, changes: Iterable[TimeSignatureChange] = ()):
        self._changes: List[TimeSignatureChange] = []
        self._ticks: List[int] = []
        for change in changes:
            self.add(change)

    def add(self, change: TimeSignatureChange) -> None:
        index = bisect_right(self._ticks, change.tick)
        self._changes.insert(index, change)
        self._ticks.insert(index, change.tick)

    def signature_at(self, tick: int) -> TimeSignatureChange:
        index = bisect_right(self._ticks, tick)
        if index == 0:
            return DEFAULT_TIME_SIGNATURE_CHANGE
        return self._changes[index - 1]

    def with_times(self, clock: "TickClock") -> List[TimeSignatureChange]:
        """Copies of every change with ``time`` filled in from ``clock``"""
        if not self._changes:
            return []
        seconds = clock.seconds_at_many(self._ticks)
        return [
            TimeSignatureChange(
                tick=change.tick,
                numerator=change.numerator,
                denominator=change.denominator,
                metronome_interval=change.metronome_interval,
                thirty_seconds_per_quarter=change.thirty_seconds_per_quarter,
                time=float(second),
            )
            for change, second in zip(self._changes, seconds)
        ]

    def __len__(self) -> int:
        return len(self._changes)

    def __iter__(self) -> Iterator[TimeSignatureChange]:
        return iter(self._changes)


# ============================================================================
# Tick Clock
# ============================================================================

class TickClock:
    """Convert tick positions to elapsed seconds

    Integrates the piecewise-constant tempo function: segment ``i`` starts at
    the i-th tempo change (segment 0 is the implicit 120 BPM lead-in) and
    runs until the next one. Start seconds per segment are cached and only
    recomputed from the lowest tempo change inserted since the last query.
    The last resolved segment is remembered, so increasing queries walk
    forward instead of searching.

    SMPTE files bypass the tempo map: seconds = ticks / (fps * ticks_per_frame).

    One clock per TempoMap: the clock consumes the map's modification marks.
    """

    def __init__(self, header: Header, tempo_map: Optional[TempoMap] = None):
        self.header = header
        self.tempo_map = tempo_map if tempo_map is not None else TempoMap()
        self._starts: List[float] = [0.0]
        self._hint = 0

    def _segment(self, index: int) -> Tuple[int, int]:
        if index == 0:
            return 0, DEFAULT_MICROSECONDS_PER_QUARTER
        change = self.tempo_map.explicit[index - 1]
        return change.tick, change.microseconds_per_quarter

    def _refresh(self) -> None:
        low_water = self.tempo_map.take_low_water()
        if low_water is not None:
            del self._starts[low_water + 1:]
            self._hint = 0

        ticks_per_beat = self.header.ticks_per_beat
        segment_count = len(self.tempo_map) + 1
        while len(self._starts) < segment_count:
            index = len(self._starts)
            previous_tick, previous_tempo = self._segment(index - 1)
            tick, _ = self._segment(index)
            self._starts.append(
                self._starts[-1] + mido.tick2second(tick - previous_tick, ticks_per_beat, previous_tempo)
            )

    def _segment_index(self, tick: int) -> int:
        ticks = self.tempo_map.ticks
        hint = self._hint
        if hint == 0 or ticks[hint - 1] <= tick:
            while hint < len(ticks) and ticks[hint] <= tick:
                hint += 1
        else:
            hint = bisect_right(ticks, tick)
        self._hint = hint
        return hint

    def seconds_at(self, tick: int) -> float:
        """Elapsed seconds from tick 0 to ``tick``

        Args:
            tick: Absolute tick position (non-negative)

        Returns:
            Seconds, 0.0 at tick 0 and non-decreasing in ``tick``
        """
        if tick < 0:
            raise ValueError(f"Tick {tick} must be non-negative")

        header = self.header
        if header.uses_smpte:
            return tick / (header.frames_per_second * header.ticks_per_frame)

        self._refresh()
        index = self._segment_index(tick)
        segment_tick, tempo = self._segment(index)
        return self._starts[index] + mido.tick2second(tick - segment_tick, header.ticks_per_beat, tempo)

    def seconds_at_many(self, ticks: Iterable[int]) -> np.ndarray:
        """Vectorized ``seconds_at`` for many tick positions at once"""
        targets = np.asarray(list(ticks), dtype=np.float64)
        if np.any(targets < 0):
            raise ValueError("Ticks must be non-negative")

        header = self.header
        if header.uses_smpte:
            return targets / (header.frames_per_second * header.ticks_per_frame)

        self._refresh()
        change_ticks = np.asarray(self.tempo_map.ticks, dtype=np.float64)
        segment_ticks = np.concatenate(([0.0], change_ticks))
        segment_tempos = np.asarray(
            [DEFAULT_MICROSECONDS_PER_QUARTER]
            + [change.microseconds_per_quarter for change in self.tempo_map.explicit],
            dtype=np.float64,
        )
        starts = np.asarray(self._starts, dtype=np.float64)

        index = np.searchsorted(change_ticks, targets, side='right')
        return starts[index] + (targets - segment_ticks[index]) * segment_tempos[index] * 1e-6 / header.ticks_per_beat

    def beats_at(self, tick: int) -> Optional[float]:
        """Elapsed quarter notes, None in SMPTE mode"""
        if self.header.uses_smpte:
            return None
        return tick / self.header.ticks_per_beat


def convert_tempo_map_to_bpm(
    tempo_changes: Sequence[TempoChange],
    clock: TickClock
) -> List[Tuple[float, float]]:
    """Convert tempo changes to (time_seconds, bpm) tuples

    Args:
        tempo_changes: Tempo changes ascending by tick
        clock: Clock used to place each change in time

    Returns:
        List of (time, bpm) tuples
    """
    return [(clock.seconds_at(change.tick), tempo_to_bpm(change.microseconds_per_quarter))
            for change in tempo_changes]


# ============================================================================
# BPM Map
# ============================================================================

def to_decimal(threshold: Threshold) -> Decimal:
    """Parse a change threshold, keeping the decimal digits it was written with"""
    try:
        value = threshold if isinstance(threshold, Decimal) else Decimal(str(threshold))
    except InvalidOperation:
        raise ValueError(f"Invalid BPM change threshold: {threshold!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"BPM change threshold must be a non-negative number, got {threshold!r}")
    return value


def threshold_decimal_places(threshold: Threshold) -> int:
    """Number of decimal digits in the threshold (0.5 → 1, 1 → 0, 1.0 → 0)"""
    value = to_decimal(threshold)
    if value == value.to_integral_value():
        return 0
    return max(0, -value.normalize().as_tuple().exponent)


def round_bpm(bpm: float, places: int) -> Decimal:
    """Round half-up to ``places`` decimal digits"""
    return Decimal(str(bpm)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def build_bpm_map(
    tempo_changes: Sequence[TempoChange],
    clock: TickClock,
    threshold: Threshold,
    precision: Optional[int] = None
) -> List[BpmMapEntry]:
    """Downsample a tempo map into significant BPM changes

    BPM values are rounded to the number of decimal digits in ``threshold``
    unless ``precision`` is given. The first change is always kept; a later
    one is kept only when its rounded BPM differs from the last *kept* value
    by at least ``threshold``.

    Args:
        tempo_changes: Tempo changes ascending by tick (lead-in included)
        clock: Clock used to place entries in time
        threshold: Minimum absolute BPM delta for a new entry
        precision: Decimal digits of BPM rounding, overriding the threshold's own

    Returns:
        List of BpmMapEntry, non-empty whenever ``tempo_changes`` is

    Example:
        Threshold 0.5 over BPMs [120.0, 120.3, 121.0, 125.0] keeps
        [120.0, 121.0, 125.0].
    """
    threshold_value = to_decimal(threshold)
    if precision is None:
        places = threshold_decimal_places(threshold_value)
    elif precision < 0:
        raise ValueError(f"Precision must be non-negative, got {precision}")
    else:
        places = precision

    entries: List[BpmMapEntry] = []
    last_kept: Optional[Decimal] = None
    for change in tempo_changes:
        rounded = round_bpm(change.bpm, places)
        if last_kept is None or abs(rounded - last_kept) >= threshold_value:
            entries.append(BpmMapEntry(
                time=clock.seconds_at(change.tick),
                bpm=float(rounded),
                microseconds_per_quarter=change.microseconds_per_quarter,
            ))
            last_kept = rounded

    return entries
