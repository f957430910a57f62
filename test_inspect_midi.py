"""
Tests for the inspect_midi command line tool
"""

import pytest

from inspect_midi import main


class TestInspectMidi:
    """Test exit codes and printed summaries"""

    def test_summary(self, tmp_path, tempo_change_file, capsys):
        """Test the summary of a decodable file"""
        path = tmp_path / "tempo.mid"
        path.write_bytes(tempo_change_file)

        assert main([str(path), '--threshold', '0.5']) == 0

        out = capsys.readouterr().out
        assert "Format 1, 2 track(s), 480 ticks/beat" in out
        assert "Track 1: Piano" in out
        assert "BPM map (threshold 0.5)" in out
        assert "60.0 BPM" in out
        assert "3/4" in out
        assert "Latest note end (with trailing): 2.000s" in out

    def test_trailing_and_note_limit(self, midi_path, capsys):
        """Test trailing time and the number of listed notes"""
        assert main([str(midi_path), '--trailing', '1.5', '--notes', '0']) == 0

        out = capsys.readouterr().out
        assert "First" not in out
        assert "Latest note end (with trailing): 2.000s" in out

    def test_failed_file(self, tmp_path, midi_path, capsys):
        """Test that any failure gives exit code 1 but other files still print"""
        bad = tmp_path / "bad.mid"
        bad.write_bytes(b"nope")

        assert main([str(midi_path), str(bad)]) == 1

        out = capsys.readouterr().out
        assert "ERROR:" in out
        assert "Tempo map:" in out

    def test_invalid_threshold(self, midi_path, capsys):
        """Test that bad settings are reported before decoding"""
        assert main([str(midi_path), '--threshold', 'fast']) == 1
        assert "ERROR:" in capsys.readouterr().out

    def test_skip_invalid_tracks(self, tmp_path, smf, capsys):
        """Test the skip flag turns a failing file into a decoded one"""
        path = tmp_path / "broken_track.mid"
        path.write_bytes(smf.file(
            smf.track(smf.event(0, 0xF1, 0)),
            smf.track(smf.note_on(0, 60, 100), smf.note_off(480, 60)),
        ))

        assert main([str(path)]) == 1
        assert main([str(path), '--skip-invalid-tracks']) == 0
        assert "pitch  60" in capsys.readouterr().out

    def test_requires_paths(self):
        """Test argparse rejects a call without files"""
        with pytest.raises(SystemExit):
            main([])
