"""Engine configuration with environment overrides."""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = "data/experiments"
DEFAULT_ARTIFACTS_DIR = "artifacts/experiments"
MIN_SAMPLE_FOR_SIGNIFICANCE = 30


class EngineConfig(BaseSettings):
    """Runtime settings for ExperimentEngine and its tooling, overridable by ABTEST_* variables."""

    model_config = SettingsConfigDict(env_prefix="ABTEST_", env_file=".env", extra="ignore")

    data_dir: str = DEFAULT_DATA_DIR
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR
    min_sample_for_significance: int = Field(
        default=MIN_SAMPLE_FOR_SIGNIFICANCE,
        ge=0,
        validation_alias=AliasChoices("ABTEST_MIN_SAMPLE", "min_sample_for_significance"),
    )
    power: float = 0.8
    srm_alpha: float = 0.01
    sticky_traffic_gate: bool = True
    load_on_start: bool = True

    @field_validator("power", "srm_alpha")
    @classmethod
    def check_probability(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError(f"must be between 0 and 1, got {v}")
        return v

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Defaults overridden by ABTEST_* environment variables (and .env)."""
        return cls()
