"""Engine configuration — weights, thresholds and storage paths.

Config files are plain JSON mirroring EngineConfig.to_dict(); any section may
be omitted and falls back to the defaults. KEEPSAKE_DB overrides the default
database location used by the CLI.
"""

import json
import math
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from keepsake.decay import DecayThresholds, validate_thresholds
from keepsake.engagement import DEFAULT_NORMALIZATION
from keepsake.errors import ConfigurationError
from keepsake.scoring import ScoringWeights, validate_weights

DEFAULT_DB_PATH = Path.home() / ".keepsake" / "keepsake.db"


def default_db_path() -> str:
    return os.environ.get("KEEPSAKE_DB", str(DEFAULT_DB_PATH))


@dataclass
class EngineConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    thresholds: DecayThresholds = field(default_factory=DecayThresholds)
    normalization_constant: float = DEFAULT_NORMALIZATION
    archive_page_size: int = 50

    def validate(self) -> "EngineConfig":
        """Raise ConfigurationError if the engine must not start with this config."""
        validate_weights(self.weights)
        validate_thresholds(self.thresholds)
        if not math.isfinite(self.normalization_constant) or self.normalization_constant <= 0:
            raise ConfigurationError("normalization_constant must be positive")
        if self.archive_page_size < 1:
            raise ConfigurationError("archive_page_size must be at least 1")
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        if not isinstance(data, dict):
            raise ConfigurationError("Config root must be a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        try:
            return cls(
                weights=_section(ScoringWeights, data.get("weights", {}), "weights"),
                thresholds=_section(DecayThresholds, data.get("thresholds", {}), "thresholds"),
                normalization_constant=_coerce(float, data.get("normalization_constant", DEFAULT_NORMALIZATION)),
                archive_page_size=_coerce(int, data.get("archive_page_size", 50)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid config value: {e}") from None


def _coerce(kind, value):
    """Convert a JSON scalar to int or float. Booleans, null and fractional ints are refused."""
    if value is None or isinstance(value, bool):
        raise TypeError(f"expected a number, got {value!r}")
    number = float(value)
    if kind is int:
        if not number.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(number)
    return number


def _section(section_cls, data, name: str):
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config section {name!r} must be a JSON object")
    types = {f.name: f.type for f in fields(section_cls)}
    unknown = set(data) - set(types)
    if unknown:
        raise ConfigurationError(f"Unknown {name} keys: {', '.join(sorted(unknown))}")
    return section_cls(**{key: _coerce(types[key], value) for key, value in data.items()})


def load_config(path: Optional[Path]) -> EngineConfig:
    """Load a config file. A missing path or file yields the defaults."""
    if path is None or not Path(path).exists():
        return EngineConfig()
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from None
    return EngineConfig.from_dict(data)


def save_config(config: EngineConfig, path: Path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2) + "\n")
