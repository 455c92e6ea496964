"""Controller configuration."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from cluster_controller.exceptions import ConfigurationError

MACHINE_POOL_GATE = "MachinePool"
KNOWN_FEATURE_GATES = [MACHINE_POOL_GATE]


class ControllerConfig(BaseModel):
    """Controller configuration."""

    feature_gates: dict[str, bool] = Field(default_factory=lambda: {MACHINE_POOL_GATE: False})
    max_concurrent_reconciles: int = 10
    namespace: str | None = None
    kubeconfig: str | None = None
    log_level: str = "INFO"

    @field_validator("feature_gates")
    @classmethod
    def validate_feature_gates(cls, v: dict[str, bool]) -> dict[str, bool]:
        """Validate only known feature gates are set."""
        unknown = sorted(set(v) - set(KNOWN_FEATURE_GATES))
        if unknown:
            raise ValueError(f"unknown feature gates {unknown}, known gates are {KNOWN_FEATURE_GATES}")
        return v

    @field_validator("max_concurrent_reconciles")
    @classmethod
    def validate_max_concurrent_reconciles(cls, v: int) -> int:
        """Validate at least one reconcile can run."""
        if v < 1:
            raise ValueError(f"max_concurrent_reconciles must be at least 1, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is a standard logging level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got '{v}'")
        return v.upper()

    @property
    def machine_pool_enabled(self) -> bool:
        return self.feature_gates.get(MACHINE_POOL_GATE, False)

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "ControllerConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                "Create the file or omit --config to use the defaults",
            )
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration file: {path}", str(e)) from e
