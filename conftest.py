"""
Shared test fixtures

Builds Standard MIDI File bytes event by event so tests can exercise exact
byte layouts (running status, foreign chunks, truncation) that a MIDI
writer would never produce. VLQs are encoded with mido, independently of
the decoder under test.
"""

import io
import struct

import mido  # type: ignore
import pytest
from mido.midifiles.meta import encode_variable_int  # type: ignore


class SmfBuilder:
    """Byte-level SMF construction helpers"""

    @staticmethod
    def vlq(value: int) -> bytes:
        return bytes(encode_variable_int(value))

    @staticmethod
    def event(delta: int, *data: int) -> bytes:
        return SmfBuilder.vlq(delta) + bytes(data)

    @staticmethod
    def note_on(delta: int, pitch: int, velocity: int, channel: int = 0) -> bytes:
        return SmfBuilder.event(delta, 0x90 | channel, pitch, velocity)

    @staticmethod
    def note_off(delta: int, pitch: int, velocity: int = 64, channel: int = 0) -> bytes:
        return SmfBuilder.event(delta, 0x80 | channel, pitch, velocity)

    @staticmethod
    def meta(delta: int, meta_type: int, payload: bytes = b"") -> bytes:
        return (SmfBuilder.vlq(delta) + bytes([0xFF, meta_type])
                + SmfBuilder.vlq(len(payload)) + payload)

    @staticmethod
    def tempo(delta: int, microseconds_per_quarter: int) -> bytes:
        return SmfBuilder.meta(delta, 0x51, microseconds_per_quarter.to_bytes(3, "big"))

    @staticmethod
    def time_signature(delta: int, numerator: int, denominator_log2: int,
                       clocks: int = 24, thirty_seconds: int = 8) -> bytes:
        return SmfBuilder.meta(delta, 0x58, bytes([numerator, denominator_log2, clocks, thirty_seconds]))

    @staticmethod
    def end_of_track(delta: int = 0) -> bytes:
        return SmfBuilder.meta(delta, 0x2F)

    @staticmethod
    def chunk(tag: bytes, body: bytes) -> bytes:
        return tag + struct.pack(">I", len(body)) + body

    @staticmethod
    def track(*events: bytes, end: bool = True) -> bytes:
        body = b"".join(events)
        if end:
            body += SmfBuilder.end_of_track()
        return SmfBuilder.chunk(b"MTrk", body)

    @staticmethod
    def header(track_count: int, division: int = 480, smf_format: int = None) -> bytes:
        if smf_format is None:
            smf_format = 0 if track_count == 1 else 1
        return SmfBuilder.chunk(b"MThd", struct.pack(">HHH", smf_format, track_count, division))

    @staticmethod
    def file(*chunks: bytes, division: int = 480, smf_format: int = None, track_count: int = None) -> bytes:
        if track_count is None:
            track_count = sum(1 for chunk in chunks if chunk[:4] == b"MTrk")
        return SmfBuilder.header(track_count, division, smf_format) + b"".join(chunks)


def mido_file_bytes(midi_file: mido.MidiFile) -> bytes:
    """Serialize a mido MidiFile in memory"""
    buffer = io.BytesIO()
    midi_file.save(file=buffer)
    return buffer.getvalue()


@pytest.fixture
def smf():
    """SMF byte builder"""
    return SmfBuilder


@pytest.fixture
def single_note_file(smf):
    """1 track, 480 ticks/beat, 120 BPM, pitch 60 held for one beat"""
    return smf.file(
        smf.track(
            smf.tempo(0, 500000),
            smf.note_on(0, 60, 100),
            smf.note_off(480, 60),
        ),
        division=480,
    )


@pytest.fixture
def tempo_change_file():
    """Format 1 file written by mido: tempo track + one note track

    Tempo: 120 BPM for the first beat, then 60 BPM.
    Notes (480 ticks/beat): pitch 60 at beat 0 for 1 beat, pitch 62 at
    beat 1 for 1 beat, pitch 64 at beat 2 for half a beat.
    """
    midi_file = mido.MidiFile(type=1, ticks_per_beat=480)

    tempo_track = mido.MidiTrack()
    tempo_track.append(mido.MetaMessage('track_name', name='Tempo', time=0))
    tempo_track.append(mido.MetaMessage('set_tempo', tempo=500000, time=0))
    tempo_track.append(mido.MetaMessage('time_signature', numerator=3, denominator=4, time=0))
    tempo_track.append(mido.MetaMessage('set_tempo', tempo=1000000, time=480))
    midi_file.tracks.append(tempo_track)

    note_track = mido.MidiTrack()
    note_track.append(mido.MetaMessage('track_name', name='Piano', time=0))
    note_track.append(mido.Message('note_on', note=60, velocity=100, time=0))
    note_track.append(mido.Message('note_off', note=60, velocity=0, time=480))
    note_track.append(mido.Message('note_on', note=62, velocity=90, time=0))
    note_track.append(mido.Message('note_off', note=62, velocity=0, time=480))
    note_track.append(mido.Message('note_on', note=64, velocity=80, time=0))
    note_track.append(mido.Message('note_on', note=64, velocity=0, time=240))
    midi_file.tracks.append(note_track)

    return mido_file_bytes(midi_file)


@pytest.fixture
def midi_path(tmp_path, single_note_file):
    """single_note_file written to disk"""
    path = tmp_path / "single.mid"
    path.write_bytes(single_note_file)
    return path
