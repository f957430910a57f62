"""
MIDI Decode Configuration

Settings that callers (the CLI, a visualizer's saved preferences) pass to the
shell. Defaults match a plain decode: no halving, 1 BPM change threshold,
no trailing time after the last note.
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from midi_core import INVALID_TRACK_POLICIES
from midi_timing_core import to_decimal


@dataclass(frozen=True)
class MidiDecodeConfig:
    """Decode and BPM-map settings

    Attributes:
        halve_division: Halve the header division (files that play at double speed)
        bpm_change_threshold: Minimum BPM delta for a new BPM map entry; its
            decimal digits also set the BPM rounding precision
        bpm_precision: Explicit BPM rounding digits (None = follow the threshold)
        trailing_duration: Seconds appended after the last note end
        bpm_source_index: Which decoded file of a batch drives the BPM map
        invalid_track_policy: "abort" or "skip" for undecodable tracks
        max_workers: Worker threads for batch decoding (None = executor default)
    """
    halve_division: bool = False
    bpm_change_threshold: Union[str, float, Decimal] = "1"
    bpm_precision: Optional[int] = None
    trailing_duration: float = 0.0
    bpm_source_index: int = 0
    invalid_track_policy: str = "abort"
    max_workers: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'bpm_change_threshold', to_decimal(self.bpm_change_threshold))

        if self.bpm_precision is not None and self.bpm_precision < 0:
            raise ValueError(f"bpm_precision must be non-negative, got {self.bpm_precision}")

        if self.trailing_duration < 0:
            raise ValueError(f"trailing_duration must be non-negative, got {self.trailing_duration}")

        if self.bpm_source_index < 0:
            raise ValueError(f"bpm_source_index must be non-negative, got {self.bpm_source_index}")

        if self.invalid_track_policy not in INVALID_TRACK_POLICIES:
            raise ValueError(
                f"invalid_track_policy must be one of {INVALID_TRACK_POLICIES}, "
                f"got {self.invalid_track_policy!r}"
            )

        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")

    @classmethod
    def from_dict(cls, settings: Mapping[str, Any]) -> "MidiDecodeConfig":
        """Build a config from saved settings, rejecting unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
        return cls(**dict(settings))
