#!/usr/bin/env python3
"""
MIDI Inspector

Decodes one or more Standard MIDI Files and prints what a visualizer would
consume: tracks and channels, the tempo map, the simplified BPM map, time
signatures and the first few notes.

Usage:
    python inspect_midi.py song.mid                    # Summary
    python inspect_midi.py song.mid --threshold 0.5    # Finer BPM map
    python inspect_midi.py a.mid b.mid --notes 20      # Several files
"""

import argparse
import logging
import sys
from typing import List, Optional

from midi_config import MidiDecodeConfig
from midi_core import build_bpm_map_for_midi, latest_note_end
from midi_shell import decode_midi_files
from midi_types import DecodedMidi, DecodeStatus


def print_summary(midi: DecodedMidi, config: MidiDecodeConfig, note_limit: int) -> None:
    header = midi.header
    if header.uses_smpte:
        timing = f"SMPTE {header.frames_per_second:g} fps x {header.ticks_per_frame:g} ticks"
    else:
        timing = f"{header.ticks_per_beat:g} ticks/beat"

    print(f"  Format {header.format}, {len(midi.tracks)} track(s), {timing}")
    print(f"  Note-ons: {midi.note_on_count}, note-offs: {midi.note_off_count}, "
          f"hanging: {midi.note_on_count - len(midi.resolved_notes())}")
    print(f"  Length: {midi.latest_note_end():.3f}s")

    for track in midi.tracks:
        print(f"  Track {track.index}: {track.name or '(unnamed)'}")
        for channel in track.channels:
            instrument = f" [{channel.instrument}]" if channel.instrument else ""
            print(f"    Channel {channel.midi_channel}{instrument}: {len(channel.notes)} event(s)")

    print("  Tempo map:")
    for change in midi.tempo_map:
        print(f"    tick {change.tick:>8}  {midi.seconds_at(change.tick):9.3f}s  {change.bpm:8.3f} BPM")

    print(f"  BPM map (threshold {config.bpm_change_threshold}):")
    for entry in build_bpm_map_for_midi(midi, config.bpm_change_threshold, config.bpm_precision):
        print(f"    {entry.time:9.3f}s  {entry.bpm} BPM")

    if midi.time_signature_map:
        print("  Time signatures:")
        for signature in midi.time_signature_map:
            print(f"    {signature.time:9.3f}s  {signature.numerator}/{signature.denominator}")

    if note_limit:
        print(f"  First {note_limit} note(s):")
        for note in midi.resolved_notes()[:note_limit]:
            print(f"    {note.time:9.3f}s  +{note.duration:.3f}s  pitch {note.pitch:>3}  "
                  f"vel {note.velocity:>3}  ch {note.channel}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Decode Standard MIDI Files and print notes, tempo and BPM maps',
        epilog="""
Examples:
  python inspect_midi.py song.mid                    # Summary
  python inspect_midi.py song.mid --threshold 0.5    # Finer BPM map
  python inspect_midi.py song.mid --halve-division   # Fix double-speed files
        """
    )
    parser.add_argument('paths', nargs='+',
                        help='MIDI files to decode')
    parser.add_argument('--threshold', default='1',
                        help='BPM change threshold for the BPM map (default: 1)')
    parser.add_argument('--precision', type=int, default=None,
                        help='BPM rounding digits (default: digits of the threshold)')
    parser.add_argument('--halve-division', action='store_true',
                        help='Halve the tick division for files that play at double speed')
    parser.add_argument('--skip-invalid-tracks', action='store_true',
                        help='Skip undecodable tracks instead of failing the file')
    parser.add_argument('--trailing', type=float, default=0.0,
                        help='Seconds added after the last note (default: 0)')
    parser.add_argument('--notes', type=int, default=10,
                        help='Number of notes to list per file (default: 10)')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        config = MidiDecodeConfig(
            halve_division=args.halve_division,
            bpm_change_threshold=args.threshold,
            bpm_precision=args.precision,
            trailing_duration=args.trailing,
            invalid_track_policy='skip' if args.skip_invalid_tracks else 'abort',
        )
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    outcomes = decode_midi_files(args.paths, config)

    exit_code = 0
    for outcome in outcomes:
        print(f"\n{outcome.source}")
        if outcome.status is DecodeStatus.OK:
            print_summary(outcome.midi, config, args.notes)
        else:
            print(f"  ERROR: {outcome.error}")
            exit_code = 1

    decoded = [outcome.midi for outcome in outcomes if outcome.ok]
    if decoded:
        end = latest_note_end(decoded, config.trailing_duration)
        print(f"\nLatest note end (with trailing): {end:.3f}s")

    return exit_code


if __name__ == '__main__':
    sys.exit(main())
