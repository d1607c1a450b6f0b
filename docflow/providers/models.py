from dataclasses import dataclass


@dataclass(frozen=True)
class ModelParameters:
    """Generation parameters passed through to a provider call."""

    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 4000
    timeout_seconds: float = 60.0
