"""
MIDI Shell - Imperative Shell

Handles file I/O, logging, worker threads and cancellation for MIDI decoding.
Loads MIDI files and delegates to pure functions in midi_core.py.

This is the "shell" that wraps the functional "core".
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Union

from midi_config import MidiDecodeConfig
from midi_core import CancelCheck, build_bpm_map_for_midi, decode_midi_bytes
from midi_types import (
    BpmMapEntry,
    DecodeCanceled,
    DecodedMidi,
    DecodeOutcome,
    DecodeStatus,
    MidiDecodeError,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# ============================================================================
# File Loading (Imperative Shell)
# ============================================================================

def load_midi_bytes(midi_path: PathLike) -> bytes:
    """Load raw MIDI file bytes from disk
    
    Imperative shell: performs file I/O.
    
    Args:
        midi_path: Path to MIDI file
    
    Returns:
        File contents
    
    Raises:
        FileNotFoundError: If MIDI file doesn't exist
        IOError: If file can't be read
    """
    path = Path(midi_path)
    if not path.exists():
        raise FileNotFoundError(f"MIDI file not found: {midi_path}")
    
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IOError(f"Failed to load MIDI file: {e}") from e
    
    logger.debug("Loaded %d bytes from %s", len(data), path)
    return data


# ============================================================================
# High-Level Parsing (Shell wrapping Core)
# ============================================================================

def parse_midi_bytes(
    data: bytes,
    config: Optional[MidiDecodeConfig] = None,
    should_cancel: Optional[CancelCheck] = None
) -> DecodedMidi:
    """Decode in-memory MIDI bytes with the given settings
    
    Args:
        data: Raw file bytes
        config: Decode settings (defaults when None)
        should_cancel: Optional cooperative cancellation check
    
    Returns:
        DecodedMidi
    
    Raises:
        MidiDecodeError: Subclass describing why the data could not be decoded
    """
    config = config or MidiDecodeConfig()
    midi = decode_midi_bytes(
        data,
        halve_division=config.halve_division,
        invalid_track_policy=config.invalid_track_policy,
        should_cancel=should_cancel,
    )
    
    for issue in midi.issues:
        logger.warning("Skipped rest of track %d: %s", issue.track_index, issue.detail)
    
    return midi


def parse_midi_file(
    midi_path: PathLike,
    config: Optional[MidiDecodeConfig] = None,
    should_cancel: Optional[CancelCheck] = None
) -> DecodedMidi:
    """Parse a MIDI file into a DecodedMidi
    
    Imperative shell: loads file, then delegates to pure functions.
    
    Args:
        midi_path: Path to MIDI file
        config: Decode settings (defaults when None)
        should_cancel: Optional cooperative cancellation check
    
    Returns:
        DecodedMidi with notes, tracks, tempo and time-signature maps
    
    Raises:
        FileNotFoundError: If MIDI file doesn't exist
        IOError: If file can't be read
        MidiDecodeError: If the contents can't be decoded
    """
    # IMPERATIVE: Load file from disk
    data = load_midi_bytes(midi_path)
    
    # FUNCTIONAL: Decode the loaded bytes
    midi = parse_midi_bytes(data, config, should_cancel)
    
    logger.info(
        "Decoded %s: %d track(s), %d note event(s), %d tempo change(s)",
        midi_path, len(midi.tracks), len(midi.notes), len(midi.tempo_map)
    )
    return midi


def decode_midi_file(
    midi_path: PathLike,
    config: Optional[MidiDecodeConfig] = None,
    should_cancel: Optional[CancelCheck] = None
) -> DecodeOutcome:
    """Decode one file into a typed outcome instead of raising
    
    Args:
        midi_path: Path to MIDI file
        config: Decode settings
        should_cancel: Optional cooperative cancellation check
    
    Returns:
        DecodeOutcome: OK with the file, FAILED with the error, or
        CANCELED with no value
    """
    source = str(midi_path)
    try:
        midi = parse_midi_file(midi_path, config, should_cancel)
    except DecodeCanceled as e:
        logger.info("Decoding of %s canceled", source)
        return DecodeOutcome(source=source, status=DecodeStatus.CANCELED, error=e)
    except (MidiDecodeError, OSError) as e:
        logger.warning("Failed to decode %s: %s", source, e)
        return DecodeOutcome(source=source, status=DecodeStatus.FAILED, error=e)
    
    return DecodeOutcome(source=source, status=DecodeStatus.OK, midi=midi)


def decode_midi_files(
    midi_paths: Sequence[PathLike],
    config: Optional[MidiDecodeConfig] = None,
    cancel_event: Optional[threading.Event] = None
) -> List[DecodeOutcome]:
    """Decode several files in parallel on worker threads
    
    Each file is decoded independently; a failure in one never affects the
    others. Setting ``cancel_event`` stops work at the next check and turns
    unfinished files into CANCELED outcomes.
    
    Args:
        midi_paths: Files to decode
        config: Decode settings shared by every file
        cancel_event: Optional event that requests cancellation when set
    
    Returns:
        One DecodeOutcome per path, in input order
    """
    config = config or MidiDecodeConfig()
    should_cancel = cancel_event.is_set if cancel_event is not None else None
    
    if not midi_paths:
        return []
    
    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        futures = [
            executor.submit(decode_midi_file, path, config, should_cancel)
            for path in midi_paths
        ]
        outcomes = [future.result() for future in futures]
    
    failed = sum(1 for outcome in outcomes if outcome.status is DecodeStatus.FAILED)
    canceled = sum(1 for outcome in outcomes if outcome.status is DecodeStatus.CANCELED)
    logger.info(
        "Decoded %d file(s): %d ok, %d failed, %d canceled",
        len(outcomes), len(outcomes) - failed - canceled, failed, canceled
    )
    return outcomes


# ============================================================================
# Convenience Functions
# ============================================================================

def build_bpm_map_for_files(
    outcomes: Sequence[DecodeOutcome],
    config: Optional[MidiDecodeConfig] = None
) -> List[BpmMapEntry]:
    """BPM map of the configured source file among successful decodes
    
    Args:
        outcomes: Results from decode_midi_files()
        config: Supplies bpm_source_index, threshold and precision
    
    Returns:
        BPM map of the selected file
    
    Raises:
        ValueError: If no file was decoded successfully
    """
    config = config or MidiDecodeConfig()
    decoded = [outcome.midi for outcome in outcomes if outcome.ok]
    if not decoded:
        raise ValueError("No decoded MIDI file to take the BPM map from")
    
    index = config.bpm_source_index
    if index >= len(decoded):
        logger.warning(
            "BPM source index %d out of range for %d decoded file(s), using the last one",
            index, len(decoded)
        )
        index = len(decoded) - 1
    
    source = decoded[index]
    return build_bpm_map_for_midi(source, config.bpm_change_threshold, config.bpm_precision)


def validate_midi_file(midi_path: PathLike) -> bool:
    """Check if a file is a valid MIDI file
    
    Imperative shell: performs file I/O.
    
    Args:
        midi_path: Path to check
    
    Returns:
        True if the file decodes, False otherwise
    """
    try:
        parse_midi_file(midi_path)
        return True
    except (MidiDecodeError, OSError):
        return False
