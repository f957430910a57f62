"""
MIDI Parser - Public Facade

This module re-exports the functions downstream consumers (visualizers,
keyframe builders) need from midi_shell.py and the functional core.
Import from here unless you need a core internal.
"""

# Re-export shell functions (public API)
from midi_shell import (
    parse_midi_file,
    parse_midi_bytes,
    decode_midi_file,
    decode_midi_files,
    build_bpm_map_for_files,
    load_midi_bytes,
    validate_midi_file
)

# Re-export commonly used core functions
from midi_core import (
    decode_midi_bytes,
    build_bpm_map_for_midi as build_bpm_map,
    latest_note_end
)
from midi_timing_core import (
    tempo_to_bpm,
    bpm_to_tempo,
    convert_tempo_map_to_bpm
)
from midi_config import MidiDecodeConfig

__all__ = [
    # Shell functions (public API)
    'parse_midi_file',
    'parse_midi_bytes',
    'decode_midi_file',
    'decode_midi_files',
    'build_bpm_map_for_files',
    'load_midi_bytes',
    'validate_midi_file',
    # Core functions (for advanced usage)
    'decode_midi_bytes',
    'build_bpm_map',
    'latest_note_end',
    'tempo_to_bpm',
    'bpm_to_tempo',
    'convert_tempo_map_to_bpm',
    'MidiDecodeConfig',
]
