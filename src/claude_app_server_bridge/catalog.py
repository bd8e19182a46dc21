from __future__ import annotations

from .models import ModelInfo, ReasoningEffortOption

MODEL_CATALOG: tuple[ModelInfo, ...] = (
    ModelInfo(
        id="claude-sonnet-4-20250514",
        model="claude-sonnet-4-20250514",
        display_name="Claude Sonnet 4",
        description="Best balance of intelligence and speed for coding tasks",
        supported_reasoning_efforts=[
            ReasoningEffortOption(
                reasoning_effort="low",
                description="Faster responses with less reasoning",
            ),
            ReasoningEffortOption(
                reasoning_effort="medium",
                description="Balanced reasoning",
            ),
            ReasoningEffortOption(
                reasoning_effort="high",
                description="Deep reasoning for complex tasks",
            ),
        ],
        default_reasoning_effort="medium",
        is_default=True,
    ),
    ModelInfo(
        id="claude-opus-4-20250514",
        model="claude-opus-4-20250514",
        display_name="Claude Opus 4",
        description="Most capable model for complex reasoning and analysis",
        supported_reasoning_efforts=[
            ReasoningEffortOption(
                reasoning_effort="low",
                description="Faster responses with less reasoning",
            ),
            ReasoningEffortOption(
                reasoning_effort="medium",
                description="Balanced reasoning",
            ),
            ReasoningEffortOption(
                reasoning_effort="high",
                description="Maximum reasoning depth",
            ),
        ],
        default_reasoning_effort="medium",
    ),
    ModelInfo(
        id="claude-haiku-3-5-20241022",
        model="claude-3-5-haiku-20241022",
        display_name="Claude 3.5 Haiku",
        description="Fastest model for simple tasks and quick answers",
        default_reasoning_effort=None,
    ),
    ModelInfo(
        id="claude-opus-4-5-20251101",
        model="claude-opus-4-5-20251101",
        display_name="Claude Opus 4.5",
        description="Latest frontier model with deepest reasoning capabilities",
        supported_reasoning_efforts=[
            ReasoningEffortOption(
                reasoning_effort="low",
                description="Faster responses",
            ),
            ReasoningEffortOption(
                reasoning_effort="medium",
                description="Balanced reasoning",
            ),
            ReasoningEffortOption(
                reasoning_effort="high",
                description="Maximum depth",
            ),
        ],
        default_reasoning_effort="medium",
    ),
)


def list_models() -> list[dict[str, object]]:
    """Return the catalog in wire form."""
    return [model.to_wire() for model in MODEL_CATALOG]
