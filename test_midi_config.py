"""
Tests for MIDI Decode Configuration
"""

from decimal import Decimal

import pytest

from midi_config import MidiDecodeConfig


class TestDefaults:
    """Test the documented defaults"""

    def test_defaults(self):
        """Test a plain decode configuration"""
        config = MidiDecodeConfig()

        assert config.halve_division is False
        assert config.bpm_change_threshold == Decimal("1")
        assert config.bpm_precision is None
        assert config.trailing_duration == 0.0
        assert config.bpm_source_index == 0
        assert config.invalid_track_policy == "abort"
        assert config.max_workers is None

    def test_threshold_keeps_written_digits(self):
        """Test that float thresholds become exact decimals"""
        assert MidiDecodeConfig(bpm_change_threshold=0.1).bpm_change_threshold == Decimal("0.1")
        assert MidiDecodeConfig(bpm_change_threshold="0.50").bpm_change_threshold == Decimal("0.50")


class TestValidation:
    """Test rejected settings"""

    @pytest.mark.parametrize("settings", [
        {'bpm_change_threshold': "fast"},
        {'bpm_change_threshold': -1},
        {'bpm_precision': -1},
        {'trailing_duration': -0.5},
        {'bpm_source_index': -1},
        {'invalid_track_policy': "ignore"},
        {'max_workers': 0},
    ])
    def test_invalid(self, settings):
        """Test that each bad value raises ValueError"""
        with pytest.raises(ValueError):
            MidiDecodeConfig(**settings)


class TestFromDict:
    """Test building from saved settings"""

    def test_known_keys(self):
        """Test a saved settings mapping"""
        config = MidiDecodeConfig.from_dict({
            'halve_division': True,
            'bpm_change_threshold': "0.5",
            'trailing_duration': 2.0,
            'bpm_source_index': 1,
        })

        assert config.halve_division is True
        assert config.bpm_change_threshold == Decimal("0.5")
        assert config.trailing_duration == 2.0
        assert config.bpm_source_index == 1

    def test_unknown_key(self):
        """Test that typos are not silently ignored"""
        with pytest.raises(ValueError, match="bpm_treshold"):
            MidiDecodeConfig.from_dict({'bpm_treshold': 1})
