import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

MIN_LOCATION_MULTIPLIER = 0.85
MAX_LOCATION_MULTIPLIER = 1.3

DEFAULT_JOB_SIZE_MULTIPLIERS: dict[str, float] = {
    "small": 0.8,
    "medium": 1.0,
    "large": 1.4,
}

# Order matters: the first area found in the address wins.
DEFAULT_LOCATION_MULTIPLIERS: list[tuple[str, float]] = [
    ("sandton", 1.3),
    ("rosebank", 1.25),
    ("melrose", 1.2),
    ("bryanston", 1.2),
    ("waterkloof", 1.3),
    ("constantia", 1.3),
    ("johannesburg", 1.0),
    ("pretoria", 1.0),
    ("cape town", 1.0),
    ("soweto", 0.85),
    ("alexandra", 0.85),
    ("khayelitsha", 0.85),
    ("mitchells plain", 0.85),
]


class LocationRule(BaseModel):
    area: str
    multiplier: float

    @field_validator("area")
    @classmethod
    def normalize_area(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("area must not be empty")
        return normalized

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, value: float) -> float:
        if value < MIN_LOCATION_MULTIPLIER or value > MAX_LOCATION_MULTIPLIER:
            raise ValueError(
                f"location multiplier must be between {MIN_LOCATION_MULTIPLIER} and {MAX_LOCATION_MULTIPLIER}"
            )
        return value


class PricingConfig(BaseModel):
    version: str = "default_v1"
    default_job_size: str = "medium"
    job_size_multipliers: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_JOB_SIZE_MULTIPLIERS))
    location_rules: list[LocationRule] = Field(
        default_factory=lambda: [
            LocationRule(area=area, multiplier=multiplier) for area, multiplier in DEFAULT_LOCATION_MULTIPLIERS
        ]
    )

    @field_validator("job_size_multipliers")
    @classmethod
    def validate_job_sizes(cls, value: dict[str, float]) -> dict[str, float]:
        if not value:
            raise ValueError("job_size_multipliers must not be empty")
        for size, multiplier in value.items():
            if multiplier <= 0:
                raise ValueError(f"job size multiplier for {size} must be positive")
        return {size.lower(): multiplier for size, multiplier in value.items()}


def load_pricing_config(path: str | None) -> PricingConfig:
    if not path:
        return PricingConfig()
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return PricingConfig.model_validate(raw)
