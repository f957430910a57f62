"""
Tests for the MIDI Parser facade

Checks that the public API re-exports what downstream consumers use.
"""

import pytest

import midi_parser
from midi_parser import (
    MidiDecodeConfig,
    build_bpm_map,
    decode_midi_bytes,
    latest_note_end,
    parse_midi_file,
)


def test_all_names_exist():
    """Every name in __all__ is importable"""
    for name in midi_parser.__all__:
        assert hasattr(midi_parser, name), name


def test_facade_round_trip(midi_path, tempo_change_file):
    """Decode from disk and memory, then build the downstream values"""
    from_disk = parse_midi_file(midi_path, MidiDecodeConfig(bpm_change_threshold="0.5"))
    from_memory = decode_midi_bytes(tempo_change_file)

    assert [entry.bpm for entry in build_bpm_map(from_memory, "0.5")] == [120.0, 60.0]
    assert latest_note_end([from_disk, from_memory], 0.5) == pytest.approx(2.5)
