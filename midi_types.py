"""
MIDI Data Types - Shared Contract

Defines the data contract between the SMF decoder and whatever consumes it
(animation keyframes, note rectangles, tempo displays).
Consumers depend on these values only, never on decoder internals such as
running status or cursor offsets.

Type Hierarchy:
    Header → division mode and timing resolution of one file
    NoteEvent → one note-on or note-off occurrence with time, beats and duration
    Channel / Track → per-(track, channel) views over the same NoteEvents
    TempoChange / TimeSignatureChange / BpmMapEntry → timing maps
    DecodedMidi → everything decoded from one file
    DecodeOutcome → typed result of decoding one file in a batch
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from midi_timing_core import TickClock


DEFAULT_MICROSECONDS_PER_QUARTER = 500000  # 120 BPM
DEFAULT_TIME_SIGNATURE = (4, 4)
DEFAULT_METRONOME_INTERVAL = 24
DEFAULT_THIRTY_SECONDS_PER_QUARTER = 8
CHANNELS_PER_TRACK = 16


# ============================================================================
# Errors
# ============================================================================

class MidiDecodeError(Exception):
    """Base class for everything that stops a file from decoding"""


class NotAMidiFile(MidiDecodeError):
    """The buffer does not start with an ``MThd`` chunk"""


class InvalidHeader(NotAMidiFile):
    """The ``MThd`` chunk is present but its fields are unusable"""


class TruncatedData(MidiDecodeError):
    """A read would run past the end of the buffer or chunk
    
    Attributes:
        offset: Byte offset of the read that failed
    """
    
    def __init__(self, message: str, offset: int = 0):
        super().__init__(message)
        self.offset = offset


class InvalidEventStream(MidiDecodeError):
    """A track contains bytes that cannot be decoded as events
    
    Attributes:
        track_index: Track being decoded
        offset: Byte offset of the offending status or data byte
        tick: Tick position reached when the error occurred
    """
    
    def __init__(self, message: str, track_index: int = 0, offset: int = 0, tick: int = 0):
        super().__init__(message)
        self.track_index = track_index
        self.offset = offset
        self.tick = tick


class DecodeCanceled(MidiDecodeError):
    """Decoding stopped because the caller asked for cancellation"""


# ============================================================================
# Header
# ============================================================================

@dataclass(frozen=True)
class Header:
    """Parsed ``MThd`` chunk
    
    Exactly one timing mode is populated: ``ticks_per_beat`` for metrical
    timing, or ``frames_per_second`` + ``ticks_per_frame`` for SMPTE timing.
    
    Attributes:
        format: SMF format (0, 1 or 2)
        track_count: Number of tracks declared by the header
        division: Raw 16-bit division field
        ticks_per_beat: Ticks per quarter note (after optional halving)
        frames_per_second: SMPTE frame rate (29.97 for drop-frame)
        ticks_per_frame: Ticks per SMPTE frame (after optional halving)
    """
    format: int
    track_count: int
    division: int
    ticks_per_beat: Optional[float] = None
    frames_per_second: Optional[float] = None
    ticks_per_frame: Optional[float] = None
    
    @property
    def uses_smpte(self) -> bool:
        return self.ticks_per_beat is None


# ============================================================================
# Notes, Channels, Tracks
# ============================================================================

@dataclass(frozen=True)
class NoteEvent:
    """A note-on or note-off occurrence
    
    Velocity 0 encodes a note-off. Durations stay ``None`` until a matching
    note-off resolves the note-on; notes that never get one are "hanging"
    and are skipped by ``DecodedMidi.resolved_notes()``.
    
    Attributes:
        tick: Absolute tick position within the track
        time: Elapsed seconds at ``tick``
        beats: Elapsed quarter notes at ``tick`` (None in SMPTE mode)
        channel: Global channel index, ``track_index * 16 + midi_channel``
        pitch: MIDI note number (0-127)
        velocity: MIDI velocity (0-127), 0 for note-off
        duration: Seconds until the matching note-off
        duration_beats: Quarter notes until the matching note-off
    """
    tick: int
    time: float
    beats: Optional[float]
    channel: int
    pitch: int
    velocity: int
    duration: Optional[float] = None
    duration_beats: Optional[float] = None
    
    @property
    def track_index(self) -> int:
        return self.channel // CHANNELS_PER_TRACK
    
    @property
    def midi_channel(self) -> int:
        return self.channel % CHANNELS_PER_TRACK
    
    @property
    def is_note_on(self) -> bool:
        return self.velocity > 0
    
    @property
    def is_resolved(self) -> bool:
        return self.duration is not None
    
    @property
    def end_time(self) -> Optional[float]:
        if self.duration is None:
            return None
        return self.time + self.duration


@dataclass
class Channel:
    """One of the 16 logical channels of a track
    
    Created lazily the first time a note or instrument name refers to it.
    """
    index: int
    instrument: Optional[str] = None
    notes: List[NoteEvent] = field(default_factory=list)
    
    @property
    def track_index(self) -> int:
        return self.index // CHANNELS_PER_TRACK
    
    @property
    def midi_channel(self) -> int:
        return self.index % CHANNELS_PER_TRACK


@dataclass
class Track:
    """One ``MTrk`` chunk, indexed in file order from 0"""
    index: int
    name: Optional[str] = None
    channels: List[Channel] = field(default_factory=list)


# ============================================================================
# Timing Maps
# ============================================================================

@dataclass(frozen=True)
class TempoChange:
    """Set-tempo meta event at a tick position"""
    tick: int
    microseconds_per_quarter: int
    
    @property
    def bpm(self) -> float:
        return 60_000_000 / self.microseconds_per_quarter


@dataclass(frozen=True)
class TimeSignatureChange:
    """Time-signature meta event
    
    Attributes:
        tick: Tick position of the change
        numerator: Beats per bar
        denominator: Note value of a beat (already expanded from log2)
        metronome_interval: MIDI clocks per metronome click
        thirty_seconds_per_quarter: Notated 32nd notes per quarter note
        time: Elapsed seconds at ``tick``, filled in after decoding
    """
    tick: int
    numerator: int
    denominator: int
    metronome_interval: int
    thirty_seconds_per_quarter: int
    time: float = 0.0


@dataclass(frozen=True)
class BpmMapEntry:
    """Simplified tempo point for the animation layer"""
    time: float
    bpm: float
    microseconds_per_quarter: int


@dataclass(frozen=True)
class DecodeIssue:
    """A track abandoned after an undecodable event (skip policy only)"""
    track_index: int
    offset: int
    tick: int
    detail: str


# ============================================================================
# Decoded File
# ============================================================================

@dataclass(frozen=True)
class DecodedMidi:
    """Everything decoded from one SMF
    
    Attributes:
        header: Parsed header
        tracks: Tracks in file order
        channels: Global channel index → Channel
        notes: Every note-on and note-off, sorted by time
        tempo_map: Tempo changes ascending by tick (implicit 120 BPM lead-in included)
        time_signature_map: Time signature changes ascending by tick, with times
        clock: TickClock used for every time value in this file
        note_on_count: Number of note-ons decoded
        note_off_count: Number of note-offs (including velocity-0 note-ons)
        chunk_count: Number of chunks after the header, foreign ones included
        issues: Tracks abandoned under the skip policy
    """
    header: Header
    tracks: List[Track]
    channels: Dict[int, Channel]
    notes: List[NoteEvent]
    tempo_map: List[TempoChange]
    time_signature_map: List[TimeSignatureChange]
    clock: "TickClock"
    note_on_count: int = 0
    note_off_count: int = 0
    chunk_count: int = 0
    issues: Tuple[DecodeIssue, ...] = ()
    
    def seconds_at(self, tick: int) -> float:
        return self.clock.seconds_at(tick)
    
    def resolved_notes(self) -> List[NoteEvent]:
        """Note-ons with a resolved duration, in chronological order"""
        return [note for note in self.notes if note.is_note_on and note.is_resolved]
    
    def notes_for_channel(self, index: int) -> List[NoteEvent]:
        channel = self.channels.get(index)
        return list(channel.notes) if channel else []
    
    def latest_note_end(self) -> float:
        """End time of the last resolved note, 0.0 when there is none"""
        return max((note.end_time for note in self.resolved_notes()), default=0.0)
    
    @property
    def duration(self) -> float:
        last_event = self.notes[-1].time if self.notes else 0.0
        return max(last_event, self.latest_note_end())


class DecodeStatus(Enum):
    OK = "ok"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class DecodeOutcome:
    """Result of decoding one file
    
    ``midi`` is set only for ``OK``. ``CANCELED`` carries no value: partial
    results are discarded.
    """
    source: str
    status: DecodeStatus
    midi: Optional[DecodedMidi] = None
    error: Optional[BaseException] = None
    
    @property
    def ok(self) -> bool:
        return self.status is DecodeStatus.OK
    
    def unwrap(self) -> DecodedMidi:
        if self.status is DecodeStatus.OK and self.midi is not None:
            return self.midi
        if self.error is not None:
            raise self.error
        raise DecodeCanceled(f"Decoding of {self.source} was canceled")


# ============================================================================
# Conversion Functions
# ============================================================================

def note_event_to_dict(note: NoteEvent) -> Dict[str, Any]:
    """Convert a NoteEvent to the fields the visual layer places elements with
    
    Args:
        note: Decoded note event
    
    Returns:
        Dictionary with time, duration, pitch, velocity and channel
    """
    return {
        'time': note.time,
        'duration': note.duration,
        'pitch': note.pitch,
        'velocity': note.velocity,
        'channel': note.channel,
    }


# ============================================================================
# Validation Functions
# ============================================================================

def validate_note_event(note: NoteEvent) -> bool:
    """Validate NoteEvent fields are within MIDI ranges
    
    Args:
        note: NoteEvent to validate
    
    Returns:
        True if valid, raises ValueError if invalid
    """
    if not (0 <= note.pitch <= 127):
        raise ValueError(f"MIDI note {note.pitch} out of range [0, 127]")
    
    if note.time < 0:
        raise ValueError(f"Note time {note.time} must be non-negative")
    
    if not (0 <= note.velocity <= 127):
        raise ValueError(f"Velocity {note.velocity} out of range [0, 127]")
    
    if note.channel < 0:
        raise ValueError(f"Channel {note.channel} must be non-negative")
    
    if note.duration is not None and note.duration < 0:
        raise ValueError(f"Duration {note.duration} must be non-negative")
    
    if note.duration is not None and not note.is_note_on:
        raise ValueError("Only note-ons carry a duration")
    
    return True
