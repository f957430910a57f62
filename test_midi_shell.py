"""
Tests for MIDI Shell - Imperative Shell

Tests file loading, logging, batch decoding and cancellation.
Uses pytest's tmp_path for real files on disk.
"""

import logging
import threading

import pytest

from midi_config import MidiDecodeConfig
from midi_shell import (
    build_bpm_map_for_files,
    decode_midi_file,
    decode_midi_files,
    load_midi_bytes,
    parse_midi_bytes,
    parse_midi_file,
    validate_midi_file,
)
from midi_types import DecodeStatus, InvalidEventStream, NotAMidiFile


class TestLoadMidiBytes:
    """Test reading files from disk"""

    def test_loads_bytes(self, midi_path, single_note_file):
        """Test that file contents are returned unchanged"""
        assert load_midi_bytes(midi_path) == single_note_file

    def test_accepts_str_path(self, midi_path, single_note_file):
        """Test string paths"""
        assert load_midi_bytes(str(midi_path)) == single_note_file

    def test_missing_file(self, tmp_path):
        """Test FileNotFoundError for a missing file"""
        with pytest.raises(FileNotFoundError):
            load_midi_bytes(tmp_path / "missing.mid")

    def test_directory_is_io_error(self, tmp_path):
        """Test that an unreadable path becomes IOError"""
        with pytest.raises(IOError):
            load_midi_bytes(tmp_path)


class TestParseMidiFile:
    """Test single-file decoding"""

    def test_parse(self, midi_path):
        """Test a file decodes with default settings"""
        midi = parse_midi_file(midi_path)

        assert len(midi.resolved_notes()) == 1
        assert midi.resolved_notes()[0].duration == pytest.approx(0.5)

    def test_config_is_applied(self, midi_path):
        """Test that halve_division reaches the decoder"""
        midi = parse_midi_file(midi_path, MidiDecodeConfig(halve_division=True))

        assert midi.resolved_notes()[0].duration == pytest.approx(1.0)

    def test_logs_summary(self, midi_path, caplog):
        """Test the info line after decoding"""
        with caplog.at_level(logging.INFO, logger="midi_shell"):
            parse_midi_file(midi_path)

        assert "1 track(s)" in caplog.text
        assert "2 note event(s)" in caplog.text

    def test_errors_propagate(self, tmp_path):
        """Test that decode errors are raised from the single-file API"""
        path = tmp_path / "bad.mid"
        path.write_bytes(b"not midi at all")

        with pytest.raises(NotAMidiFile):
            parse_midi_file(path)

    def test_skipped_tracks_are_logged(self, smf, caplog):
        """Test a warning for each abandoned track"""
        data = smf.file(smf.track(smf.event(0, 0xF1, 0)), smf.track())
        config = MidiDecodeConfig(invalid_track_policy="skip")

        with caplog.at_level(logging.WARNING, logger="midi_shell"):
            midi = parse_midi_bytes(data, config)

        assert len(midi.issues) == 1
        assert "Skipped rest of track 0" in caplog.text

    def test_abort_policy_from_config(self, smf):
        """Test that the default config aborts on an invalid track"""
        data = smf.file(smf.track(smf.event(0, 0xF1, 0)))

        with pytest.raises(InvalidEventStream):
            parse_midi_bytes(data)


class TestDecodeOutcomes:
    """Test typed single-file results"""

    def test_ok(self, midi_path):
        """Test a successful outcome"""
        outcome = decode_midi_file(midi_path)

        assert outcome.status is DecodeStatus.OK
        assert outcome.source == str(midi_path)
        assert outcome.unwrap().note_on_count == 1

    def test_failed(self, tmp_path, caplog):
        """Test that decode errors become FAILED outcomes"""
        path = tmp_path / "bad.mid"
        path.write_bytes(b"RIFF")

        with caplog.at_level(logging.WARNING, logger="midi_shell"):
            outcome = decode_midi_file(path)

        assert outcome.status is DecodeStatus.FAILED
        assert isinstance(outcome.error, NotAMidiFile)
        assert "Failed to decode" in caplog.text

    def test_missing_file_fails(self, tmp_path):
        """Test that I/O errors become FAILED outcomes"""
        outcome = decode_midi_file(tmp_path / "missing.mid")

        assert outcome.status is DecodeStatus.FAILED
        assert isinstance(outcome.error, FileNotFoundError)

    def test_canceled(self, midi_path):
        """Test that cancellation discards the result"""
        outcome = decode_midi_file(midi_path, should_cancel=lambda: True)

        assert outcome.status is DecodeStatus.CANCELED
        assert outcome.midi is None


class TestBatchDecoding:
    """Test parallel decoding of several files"""

    @pytest.fixture
    def paths(self, tmp_path, single_note_file, tempo_change_file):
        single = tmp_path / "single.mid"
        single.write_bytes(single_note_file)
        broken = tmp_path / "broken.mid"
        broken.write_bytes(b"MThd\x00\x00")
        tempo = tmp_path / "tempo.mid"
        tempo.write_bytes(tempo_change_file)
        return [single, broken, tempo]

    def test_outcomes_in_input_order(self, paths):
        """Test one outcome per path, failures isolated"""
        outcomes = decode_midi_files(paths, MidiDecodeConfig(max_workers=3))

        assert [outcome.source for outcome in outcomes] == [str(path) for path in paths]
        assert [outcome.status for outcome in outcomes] == [
            DecodeStatus.OK, DecodeStatus.FAILED, DecodeStatus.OK
        ]
        assert outcomes[2].midi.latest_note_end() == pytest.approx(2.0)

    def test_empty_batch(self):
        """Test that no paths give no outcomes"""
        assert decode_midi_files([]) == []

    def test_cancel_event(self, paths):
        """Test that a set event cancels every file"""
        cancel_event = threading.Event()
        cancel_event.set()

        outcomes = decode_midi_files(paths, cancel_event=cancel_event)

        # the broken file fails on its header before the first cancel check
        assert [outcome.status for outcome in outcomes] == [
            DecodeStatus.CANCELED, DecodeStatus.FAILED, DecodeStatus.CANCELED
        ]

    def test_unset_cancel_event(self, paths):
        """Test that a clear event changes nothing"""
        outcomes = decode_midi_files(paths, cancel_event=threading.Event())

        assert outcomes[0].ok and outcomes[2].ok

    def test_logs_batch_summary(self, paths, caplog):
        """Test the batch info line"""
        with caplog.at_level(logging.INFO, logger="midi_shell"):
            decode_midi_files(paths)

        assert "Decoded 3 file(s): 2 ok, 1 failed, 0 canceled" in caplog.text


class TestBpmMapForFiles:
    """Test choosing the BPM source file"""

    @pytest.fixture
    def outcomes(self, tmp_path, single_note_file, tempo_change_file):
        paths = []
        for name, data in [("single.mid", single_note_file), ("tempo.mid", tempo_change_file)]:
            path = tmp_path / name
            path.write_bytes(data)
            paths.append(path)
        return decode_midi_files(paths)

    def test_default_source_is_first(self, outcomes):
        """Test index 0 picks the first decoded file"""
        bpm_map = build_bpm_map_for_files(outcomes)

        assert [entry.bpm for entry in bpm_map] == [120.0]

    def test_source_index(self, outcomes):
        """Test choosing another decoded file"""
        bpm_map = build_bpm_map_for_files(outcomes, MidiDecodeConfig(bpm_source_index=1))

        assert [entry.bpm for entry in bpm_map] == [120.0, 60.0]

    def test_out_of_range_uses_last(self, outcomes, caplog):
        """Test that a too-large index falls back to the last file"""
        with caplog.at_level(logging.WARNING, logger="midi_shell"):
            bpm_map = build_bpm_map_for_files(outcomes, MidiDecodeConfig(bpm_source_index=5))

        assert [entry.bpm for entry in bpm_map] == [120.0, 60.0]
        assert "out of range" in caplog.text

    def test_no_decoded_files(self):
        """Test that there must be something to take the map from"""
        with pytest.raises(ValueError):
            build_bpm_map_for_files([])


class TestValidateMidiFile:
    """Test the validity check"""

    def test_valid(self, midi_path):
        assert validate_midi_file(midi_path) is True

    def test_invalid(self, tmp_path):
        path = tmp_path / "bad.mid"
        path.write_bytes(b"MThd")
        assert validate_midi_file(path) is False

    def test_missing(self, tmp_path):
        assert validate_midi_file(tmp_path / "missing.mid") is False
