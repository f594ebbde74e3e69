"""Model catalog and capability vocabulary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from model_relay.config import MODELS


class Capability(Enum):
    """Capability tags shared by task requirements and model characteristics."""

    SPEED = "speed"
    ACCURACY = "accuracy"
    CREATIVITY = "creativity"
    REASONING = "reasoning"
    CLASSIFICATION = "classification"
    # Characteristic-only tags matched against task types
    CREATIVE_WRITING = "creative_writing"
    ANALYSIS = "analysis"


# Tags a TaskAnalysis may list as requirements
REQUIREMENT_TAGS: frozenset[Capability] = frozenset(
    {
        Capability.SPEED,
        Capability.ACCURACY,
        Capability.CREATIVITY,
        Capability.REASONING,
        Capability.CLASSIFICATION,
    }
)


class CostTier(Enum):
    """Relative cost per call."""

    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SpeedTier(Enum):
    """Relative latency."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of a selectable model."""

    id: str
    display_name: str
    provider: str  # Vendor value from models.vendor_client.Vendor
    characteristics: frozenset[Capability]
    cost_tier: CostTier
    speed_tier: SpeedTier
    upstream_model: str

    def has(self, capability: Capability) -> bool:
        """Check whether the model carries a capability tag."""
        return capability in self.characteristics

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "provider": self.provider,
            "characteristics": sorted(c.value for c in self.characteristics),
            "cost_tier": self.cost_tier.value,
            "speed_tier": self.speed_tier.value,
        }


# Catalog order is the tie-break order for selection
DEFAULT_CATALOG: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="gemini-flash",
        display_name="Gemini 1.5 Flash",
        provider="gemini",
        characteristics=frozenset(
            {Capability.SPEED, Capability.CLASSIFICATION, Capability.ACCURACY}
        ),
        cost_tier=CostTier.VERY_LOW,
        speed_tier=SpeedTier.FAST,
        upstream_model=MODELS.GEMINI_FLASH_MODEL,
    ),
    ModelDescriptor(
        id="gemini-pro",
        display_name="Gemini 1.5 Pro",
        provider="gemini",
        characteristics=frozenset(
            {
                Capability.REASONING,
                Capability.ANALYSIS,
                Capability.ACCURACY,
                Capability.CREATIVE_WRITING,
            }
        ),
        cost_tier=CostTier.MEDIUM,
        speed_tier=SpeedTier.MEDIUM,
        upstream_model=MODELS.GEMINI_PRO_MODEL,
    ),
    ModelDescriptor(
        id="claude-sonnet",
        display_name="Claude 3.5 Sonnet",
        provider="claude",
        characteristics=frozenset(
            {
                Capability.REASONING,
                Capability.ANALYSIS,
                Capability.CREATIVITY,
                Capability.CREATIVE_WRITING,
                Capability.ACCURACY,
            }
        ),
        cost_tier=CostTier.HIGH,
        speed_tier=SpeedTier.MEDIUM,
        upstream_model=MODELS.CLAUDE_MODEL,
    ),
    ModelDescriptor(
        id="mistral-7b-instruct",
        display_name="Mistral 7B Instruct",
        provider="huggingface",
        characteristics=frozenset({Capability.SPEED, Capability.CREATIVITY}),
        cost_tier=CostTier.VERY_LOW,
        speed_tier=SpeedTier.MEDIUM,
        upstream_model="mistralai/Mistral-7B-Instruct-v0.2",
    ),
)


def get_descriptor(
    model_id: str, catalog: tuple[ModelDescriptor, ...] = DEFAULT_CATALOG
) -> ModelDescriptor | None:
    """Look up a catalog entry by id."""
    for descriptor in catalog:
        if descriptor.id == model_id:
            return descriptor
    return None
