"""
MIDI Core - Functional Core

Decodes Standard MIDI File bytes into note events, tempo and time-signature
maps. Takes bytes already in memory and returns a DecodedMidi value.
No side effects: no printing, no file I/O, no logging.

Control flow:
    iter_chunks() → TrackEventDecoder.decode() per MTrk chunk
        → TempoMap / TimeSignatureMap on meta events
        → NoteAssembler on note events, timestamped through the TickClock
    → global note list sorted by time

File I/O is handled by midi_shell.py.
"""

from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from midi_bytes_core import ByteCursor, Chunk, header_end, iter_chunks, read_header
from midi_timing_core import (
    DEFAULT_TIME_SIGNATURE_CHANGE,
    TempoMap,
    Threshold,
    TickClock,
    TimeSignatureMap,
    build_bpm_map,
)
from midi_types import (
    CHANNELS_PER_TRACK,
    DEFAULT_MICROSECONDS_PER_QUARTER,
    BpmMapEntry,
    Channel,
    DecodeCanceled,
    DecodedMidi,
    DecodeIssue,
    Header,
    InvalidEventStream,
    NoteEvent,
    TimeSignatureChange,
    Track,
)

CancelCheck = Callable[[], bool]

INVALID_TRACK_POLICIES = ("abort", "skip")
CANCEL_CHECK_INTERVAL = 4096

META_EVENT = 0xFF
SYSEX_EVENTS = (0xF0, 0xF7)
META_TRACK_NAME = 0x03
META_INSTRUMENT_NAME = 0x04
META_CHANNEL_PREFIX = 0x20
META_SET_TEMPO = 0x51
META_TIME_SIGNATURE = 0x58

NOTE_OFF = 0x80
NOTE_ON = 0x90
TWO_DATA_BYTE_EVENTS = (0xA0, 0xB0, 0xE0)  # poly pressure, control change, pitch bend
ONE_DATA_BYTE_EVENTS = (0xC0, 0xD0)  # program change, channel pressure


# ============================================================================
# Note Assembly
# ============================================================================

class NoteAssembler:
    """Collect note events and pair note-offs with their note-ons
    
    Open note-ons are kept on a small stack per (channel, pitch). A note-off
    resolves the newest open note-on of the same pitch on the same channel,
    so overlapping same-pitch notes resolve last-in-first-out.
    """
    
    def __init__(self):
        self.notes: List[NoteEvent] = []
        self.channels: Dict[int, Channel] = {}
        self.note_on_count = 0
        self.note_off_count = 0
        # (channel, pitch) -> stack of (global index, channel index)
        self._open: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
    
    def channel_for(self, track: Track, index: int) -> Channel:
        """Find a channel, creating it on first reference"""
        channel = self.channels.get(index)
        if channel is None:
            channel = Channel(index=index)
            self.channels[index] = channel
            track.channels.append(channel)
        return channel
    
    def _append(self, track: Track, note: NoteEvent) -> Tuple[int, int]:
        channel = self.channel_for(track, note.channel)
        self.notes.append(note)
        channel.notes.append(note)
        return len(self.notes) - 1, len(channel.notes) - 1
    
    def note_on(self, track: Track, note: NoteEvent) -> NoteEvent:
        positions = self._append(track, note)
        self._open.setdefault((note.channel, note.pitch), []).append(positions)
        self.note_on_count += 1
        return note
    
    def note_off(self, track: Track, note: NoteEvent) -> Optional[NoteEvent]:
        """Record a terminator and resolve the nearest open note-on
        
        Returns:
            The resolved note-on, or None when nothing was open
        """
        self._append(track, note)
        self.note_off_count += 1
        
        stack = self._open.get((note.channel, note.pitch))
        if not stack:
            return None
        
        global_index, channel_index = stack.pop()
        started = self.notes[global_index]
        duration_beats = None
        if note.beats is not None and started.beats is not None:
            duration_beats = note.beats - started.beats
        resolved = replace(started, duration=note.time - started.time, duration_beats=duration_beats)
        
        self.notes[global_index] = resolved
        self.channels[note.channel].notes[channel_index] = resolved
        return resolved


# ============================================================================
# Track Decoding
# ============================================================================

@dataclass
class DecodingState:
    """Per-track decoder context
    
    Starts from the documented defaults (120 BPM, 4/4, 24 clocks per click,
    8 32nds per quarter) and is updated as events are consumed.
    """
    track_index: int
    position: int
    end: int
    running_status: Optional[int] = None
    ticks: int = 0
    time: float = 0.0
    beats: Optional[float] = 0.0
    channel_prefix: int = 0
    microseconds_per_quarter: int = DEFAULT_MICROSECONDS_PER_QUARTER
    time_signature: TimeSignatureChange = DEFAULT_TIME_SIGNATURE_CHANGE
    events: int = 0


class TrackEventDecoder:
    """Decode ``MTrk`` chunks of one file into the shared maps and note lists"""
    
    def __init__(
        self,
        data: bytes,
        header: Header,
        clock: TickClock,
        assembler: NoteAssembler,
        time_signatures: TimeSignatureMap,
        should_cancel: Optional[CancelCheck] = None
    ):
        self.data = data
        self.header = header
        self.clock = clock
        self.assembler = assembler
        self.time_signatures = time_signatures
        self.should_cancel = should_cancel
    
    def decode(self, track: Track, chunk: Chunk) -> DecodingState:
        """Decode every event of one track chunk
        
        Args:
            track: Track receiving the name and channels
            chunk: Byte range of the chunk data
        
        Returns:
            Final decoding state (ticks reached, tempo in effect, ...)
        
        Raises:
            TruncatedData: If an event runs past the chunk or file end
            InvalidEventStream: If a status byte cannot be decoded
            DecodeCanceled: If ``should_cancel`` reports True
        """
        cursor = ByteCursor(self.data, end=chunk.data_end)
        state = DecodingState(
            track_index=track.index,
            position=chunk.data_start,
            end=chunk.data_end,
            beats=self.clock.beats_at(0),
        )
        
        while state.position < state.end:
            if self.should_cancel is not None and state.events % CANCEL_CHECK_INTERVAL == 0:
                if self.should_cancel():
                    raise DecodeCanceled(f"Canceled while decoding track {track.index}")
            self.step(cursor, state, track)
            state.events += 1
        
        return state
    
    def step(self, cursor: ByteCursor, state: DecodingState, track: Track) -> None:
        """Consume one delta-time + event"""
        delta, size = cursor.vlq(state.position)
        state.position += size
        if delta:
            state.ticks += delta
            state.time = self.clock.seconds_at(state.ticks)
            state.beats = self.clock.beats_at(state.ticks)
        
        status = self._read_status(cursor, state)
        
        if status == META_EVENT:
            self._meta_event(cursor, state, track)
        elif status in SYSEX_EVENTS:
            _, consumed = cursor.var_bytes(state.position)
            state.position += consumed
        elif status >= 0xF0:
            raise self._invalid(state, f"Undecodable status byte 0x{status:02X}", state.position - 1)
        else:
            self._channel_event(cursor, state, track, status)
    
    def _read_status(self, cursor: ByteCursor, state: DecodingState) -> int:
        status = cursor.u8(state.position)
        if status & 0x80:
            state.position += 1
            # meta and sysex events leave running status alone
            if status < 0xF0:
                state.running_status = status
            return status
        
        if state.running_status is None:
            raise self._invalid(state, "Running status used before any status byte", state.position)
        return state.running_status
    
    def _data_byte(self, cursor: ByteCursor, state: DecodingState, offset: int) -> int:
        value = cursor.u8(offset)
        if value & 0x80:
            raise self._invalid(state, f"Data byte 0x{value:02X} has its high bit set", offset)
        return value
    
    def _channel_event(self, cursor: ByteCursor, state: DecodingState, track: Track, status: int) -> None:
        kind = status & 0xF0
        position = state.position
        
        if kind in (NOTE_OFF, NOTE_ON):
            pitch = self._data_byte(cursor, state, position)
            velocity = self._data_byte(cursor, state, position + 1)
            state.position += 2
            
            channel = track.index * CHANNELS_PER_TRACK + (status & 0x0F)
            if kind == NOTE_ON and velocity > 0:
                self.assembler.note_on(track, self._note(state, channel, pitch, velocity))
            else:
                self.assembler.note_off(track, self._note(state, channel, pitch, 0))
        elif kind in TWO_DATA_BYTE_EVENTS:
            self._data_byte(cursor, state, position)
            self._data_byte(cursor, state, position + 1)
            state.position += 2
        elif kind in ONE_DATA_BYTE_EVENTS:
            self._data_byte(cursor, state, position)
            state.position += 1
        else:
            raise self._invalid(state, f"Undecodable status byte 0x{status:02X}", position)
    
    def _meta_event(self, cursor: ByteCursor, state: DecodingState, track: Track) -> None:
        meta_type = cursor.u8(state.position)
        length_offset = state.position + 1
        payload, consumed = cursor.var_bytes(length_offset)
        state.position = length_offset + consumed
        
        if meta_type == META_TRACK_NAME:
            track.name, _ = cursor.var_string(length_offset)
        elif meta_type == META_INSTRUMENT_NAME:
            index = track.index * CHANNELS_PER_TRACK + state.channel_prefix
            channel = self.assembler.channel_for(track, index)
            channel.instrument, _ = cursor.var_string(length_offset)
        elif meta_type == META_CHANNEL_PREFIX and payload:
            state.channel_prefix = payload[0] & 0x0F
        elif meta_type == META_SET_TEMPO and len(payload) >= 3:
            microseconds = int.from_bytes(payload[:3], "big", signed=False)
            if microseconds > 0:
                self.clock.tempo_map.add_tempo(state.ticks, microseconds)
                state.microseconds_per_quarter = microseconds
        elif meta_type == META_TIME_SIGNATURE and len(payload) >= 4:
            signature = TimeSignatureChange(
                tick=state.ticks,
                numerator=payload[0],
                denominator=1 << payload[1],
                metronome_interval=payload[2],
                thirty_seconds_per_quarter=payload[3],
            )
            self.time_signatures.add(signature)
            state.time_signature = signature
    
    @staticmethod
    def _note(state: DecodingState, channel: int, pitch: int, velocity: int) -> NoteEvent:
        return NoteEvent(
            tick=state.ticks,
            time=state.time,
            beats=state.beats,
            channel=channel,
            pitch=pitch,
            velocity=velocity,
        )
    
    @staticmethod
    def _invalid(state: DecodingState, detail: str, offset: int) -> InvalidEventStream:
        return InvalidEventStream(
            f"Track {state.track_index}: {detail} (offset {offset}, tick {state.ticks})",
            track_index=state.track_index,
            offset=offset,
            tick=state.ticks,
        )


# ============================================================================
# High-Level Orchestration (Pure)
# ============================================================================

def decode_midi_bytes(
    data: bytes,
    halve_division: bool = False,
    invalid_track_policy: str = "abort",
    should_cancel: Optional[CancelCheck] = None
) -> DecodedMidi:
    """Decode a complete Standard MIDI File held in memory
    
    Args:
        data: Raw file bytes
        halve_division: Halve the header division before decoding
            (for files that otherwise play at double speed)
        invalid_track_policy: "abort" raises on an undecodable track,
            "skip" records a DecodeIssue and moves on to the next MTrk chunk
        should_cancel: Polled at track boundaries and periodically within tracks
    
    Returns:
        DecodedMidi with the global note list sorted by time
    
    Raises:
        NotAMidiFile: If the MThd signature is missing or the header is unusable
        TruncatedData: If any read runs past the end of the data
        InvalidEventStream: If a track is undecodable and the policy is "abort"
        DecodeCanceled: If ``should_cancel`` reports True
    """
    if invalid_track_policy not in INVALID_TRACK_POLICIES:
        raise ValueError(f"Unknown invalid track policy: {invalid_track_policy}")
    
    header = read_header(data, halve_division=halve_division)
    tempo_map = TempoMap()
    clock = TickClock(header, tempo_map)
    time_signatures = TimeSignatureMap()
    assembler = NoteAssembler()
    decoder = TrackEventDecoder(data, header, clock, assembler, time_signatures, should_cancel)
    
    tracks: List[Track] = []
    issues: List[DecodeIssue] = []
    chunk_count = 0
    
    for chunk in iter_chunks(data, header_end(data)):
        chunk_count += 1
        if not chunk.is_track:
            continue
        
        if should_cancel is not None and should_cancel():
            raise DecodeCanceled(f"Canceled before track {len(tracks)}")
        
        track = Track(index=len(tracks))
        tracks.append(track)
        try:
            decoder.decode(track, chunk)
        except InvalidEventStream as exc:
            if invalid_track_policy == "abort":
                raise
            issues.append(DecodeIssue(
                track_index=exc.track_index,
                offset=exc.offset,
                tick=exc.tick,
                detail=str(exc),
            ))
    
    notes = sorted(assembler.notes, key=lambda n: n.time)
    
    return DecodedMidi(
        header=header,
        tracks=tracks,
        channels=assembler.channels,
        notes=notes,
        tempo_map=tempo_map.changes(),
        time_signature_map=time_signatures.with_times(clock),
        clock=clock,
        note_on_count=assembler.note_on_count,
        note_off_count=assembler.note_off_count,
        chunk_count=chunk_count,
        issues=tuple(issues),
    )


def build_bpm_map_for_midi(
    midi: DecodedMidi,
    threshold: Threshold,
    precision: Optional[int] = None
) -> List[BpmMapEntry]:
    """Simplified BPM timeline of a decoded file
    
    Args:
        midi: Decoded file
        threshold: Minimum BPM change worth a new entry
        precision: Optional BPM rounding digits, independent of the threshold
    
    Returns:
        List of BpmMapEntry, always starting with the tempo at tick 0
    """
    return build_bpm_map(midi.tempo_map, midi.clock, threshold, precision)


def latest_note_end(decoded_files: Iterable[DecodedMidi], trailing_duration: float = 0.0) -> float:
    """End of the last resolved note across several decoded files
    
    Args:
        decoded_files: Files decoded for the same visualization
        trailing_duration: Extra seconds appended after the last note
    
    Returns:
        Latest note end plus ``trailing_duration`` (0.0 + trailing when no notes)
    """
    latest = max((midi.latest_note_end() for midi in decoded_files), default=0.0)
    return latest + trailing_duration
