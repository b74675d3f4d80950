"""Configuration management for contextsmith."""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from contextsmith.exceptions import BudgetConfigError, ConfigError, ValidationError
from contextsmith.logger import get_logger

logger = get_logger()

CONFIG_FILENAME = "contextsmith.yaml"
CONFIG_DIR_FILENAME = Path(".contextsmith") / "config.yaml"

ESTIMATORS = ("chars", "tiktoken")


@dataclass
class RankingWeights:
    text: float = 1.0
    diff: float = 2.0
    recency: float = 0.5
    proximity: float = 1.5
    test: float = 0.8

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class Config:
    ignore: List[str] = field(default_factory=lambda: [
        "node_modules",
        "target",
        "DerivedData",
        ".next",
        "dist",
        "build",
        ".contextsmith",
        "*.min.js",
        "*.map",
    ])
    generated: List[str] = field(default_factory=lambda: [
        "*.pb.rs",
        "*.pb.go",
        "*_pb2.py",
        "*.generated.*",
    ])
    default_budget: int = 12000
    reserve_tokens: int = 500
    model: str = "gpt-4"
    estimator: str = "chars"
    context_lines: int = 3
    ranking_weights: RankingWeights = field(default_factory=RankingWeights)
    # Extra language -> extensions mappings, consulted before the built-ins
    languages: Dict[str, List[str]] = field(default_factory=lambda: {
        "rust": ["rs"],
        "typescript": ["ts", "tsx"],
        "python": ["py"],
    })
    root: Path = field(default_factory=lambda: Path(".").resolve())

    def validate(self) -> None:
        """Check budget, reserve and weights.

        Raises:
            BudgetConfigError: zero budget or reserve >= budget.
            ValidationError: any other out-of-range value.
        """
        if self.default_budget <= 0:
            raise BudgetConfigError("default_budget", "must be greater than 0")
        if self.reserve_tokens < 0:
            raise BudgetConfigError("reserve_tokens", "must not be negative")
        if self.reserve_tokens >= self.default_budget:
            raise BudgetConfigError("reserve_tokens", "must be less than default_budget")
        if self.context_lines < 0:
            raise ValidationError("context_lines", "must not be negative")
        if self.estimator not in ESTIMATORS:
            raise ValidationError("estimator", f"must be one of {', '.join(ESTIMATORS)}")
        for name, value in self.ranking_weights.to_dict().items():
            if value < 0:
                raise ValidationError(f"ranking_weights.{name}", "must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ignore": list(self.ignore),
            "generated": list(self.generated),
            "default_budget": self.default_budget,
            "reserve_tokens": self.reserve_tokens,
            "model": self.model,
            "estimator": self.estimator,
            "context_lines": self.context_lines,
            "ranking_weights": self.ranking_weights.to_dict(),
            "languages": {k: list(v) for k, v in self.languages.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        config = cls()
        known = {f.name for f in fields(cls)} - {"root"}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}'")
                continue
            if key == "ranking_weights":
                try:
                    value = RankingWeights(**(value or {}))
                except TypeError as e:
                    raise ConfigError(f"invalid ranking_weights: {e}") from e
            setattr(config, key, value)
        return config

    def save(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        self.validate()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load and validate configuration from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"cannot read config '{path}': {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config '{path}': {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config '{path}' must be a mapping")

        config = cls.from_dict(data)
        config.root = _root_for(path)
        config.validate()
        return config


def _root_for(config_path: Path) -> Path:
    parent = config_path.resolve().parent
    if parent.name == ".contextsmith":
        return parent.parent
    return parent


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    """Walk up from *start* (default CWD) looking for a config file."""
    current = (start or Path(".")).resolve()
    for _ in range(10):  # Max 10 levels up
        for candidate in (current / CONFIG_FILENAME, current / CONFIG_DIR_FILENAME):
            if candidate.exists():
                return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[Path] = None, start: Optional[Path] = None) -> Config:
    """Load configuration from *path* or auto-detect, falling back to defaults.

    Args:
        path: Explicit config file; must exist.
        start: Directory to search upwards from (default CWD). Also the
            root of the default config when nothing is found.
    """
    if path:
        if not path.exists():
            raise ConfigError(f"config file '{path}' does not exist")
        return Config.load(path)

    found = find_config_file(start)
    if found:
        logger.debug(f"Using config {found}")
        return Config.load(found)

    config = Config()
    if start is not None:
        config.root = start.resolve()
    return config
