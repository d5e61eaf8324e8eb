import json
import re
from pathlib import Path
from typing import List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

LOG_FORMAT = "%(asctime)s (%(threadName)s): %(name)s - %(levelname)s - %(message)s"

_RANGE_PATTERN = re.compile(r"^\s*(-?\d+)\s*(\.\.\.|\.\.<)\s*(-?\d+)\s*$")


class StoreSettings(BaseSettings):
    """
    Storage and shuffle settings, overridable with FEATUREDB_* environment variables
    """

    model_config = SettingsConfigDict(env_prefix="FEATUREDB_", env_file=".env", extra="ignore")

    chunk_size: int = Field(default=1024, gt=0)
    file_list_chunk_size: int = Field(default=32, gt=0)
    shuffle_chunk_size: int = Field(default=1024, gt=0)
    shuffle_passes: int = Field(default=1, gt=0)
    shuffle_seed: Optional[int] = None
    sync_every_step: bool = False
    num_workers: int = 0
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    def resolve_chunk_size(self, chunk_size: Optional[int] = None) -> int:
        if chunk_size is None:
            return self.chunk_size
        if chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
        return chunk_size


def parse_note_range(value: str) -> Tuple[int, int]:
    """
    Parse "21...108" (closed) or "21..<109" (half open) into an inclusive (low, high) pair
    """
    m = _RANGE_PATTERN.match(value)
    if m is None:
        raise ValueError(f'Invalid note range "{value}"')
    low, op, high = int(m.group(1)), m.group(2), int(m.group(3))
    if op == "..<":
        high -= 1
    if high < low:
        raise ValueError(f'Empty note range "{value}"')
    return low, high


class ExtractionConfig(BaseModel):
    """
    Parameters of the feature extraction that produced the rows of a store.
    JSON keys are camelCase, e.g. {"windowSize": 8192, "spectrumNoteRange": "21...120"}
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Input audio data sampling frequency
    sampling_frequency: float = 44100.0
    # Window size and step in audio samples
    window_size: int = Field(default=8192, gt=0)
    step_size: int = Field(default=1024, gt=0)
    # Inclusive MIDI note ranges
    representable_note_range: Tuple[int, int] = (21, 108)
    spectrum_note_range: Tuple[int, int] = (21, 120)
    # Notes per band
    spectrum_resolution: float = Field(default=1.0, gt=0)
    # Minimum distance between peaks in notes
    minimum_peak_distance: float = 0.5
    # Peak height cutoff as a multiplier of the RMS
    peak_height_cutoff_multiplier: float = 0.05
    rms_moving_average_size: int = 20
    features: List[str] = ["spectrum", "spectrum_flux", "peak_heights", "peak_locations"]

    @field_validator("representable_note_range", "spectrum_note_range", mode="before")
    @classmethod
    def _parse_range(cls, value):
        if isinstance(value, str):
            return parse_note_range(value)
        return value

    @classmethod
    def from_json_file(cls, path: Union[str, Path]):
        return cls.model_validate_json(Path(path).read_text())

    def to_json(self) -> str:
        values = self.model_dump(by_alias=True)
        for key in ("representableNoteRange", "spectrumNoteRange"):
            low, high = values[key]
            values[key] = f"{low}...{high}"
        return json.dumps(values, indent=2)

    @property
    def base_frequency(self) -> float:
        return self.sampling_frequency / self.window_size

    @property
    def label_count(self) -> int:
        low, high = self.representable_note_range
        return high - low + 1

    @property
    def band_count(self) -> int:
        low, high = self.spectrum_note_range
        return (high - low + 1) * int(self.spectrum_resolution)

    def window_count_in_samples(self, samples: int) -> int:
        if samples < self.window_size:
            return 0
        return 1 + (samples - self.window_size) // self.step_size

    def sample_count_in_windows(self, window_count: int) -> int:
        if window_count < 1:
            return 0
        return (window_count - 1) * self.step_size + self.window_size

    def band_for_note(self, note: float) -> int:
        return int(round((note - self.representable_note_range[0]) * self.spectrum_resolution))

    def note_for_band(self, band: int) -> float:
        return self.representable_note_range[0] + band / self.spectrum_resolution

    def vector_from_notes(self, notes: Sequence[int]) -> List[float]:
        low, high = self.representable_note_range
        vector = [0.0] * self.label_count
        for note in notes:
            if not low <= note <= high:
                raise ValueError(f"Note {note} outside representable range {low}...{high}")
            vector[note - low] = 1.0
        return vector

    def notes_from_vector(self, vector: Sequence[float]) -> List[int]:
        if len(vector) != self.label_count:
            raise ValueError(f"Expected a vector of {self.label_count} labels, got {len(vector)}")
        low = self.representable_note_range[0]
        return [index + low for index, value in enumerate(vector) if value >= 0.5]
