"""
DreamBoat Shared Package

Scenario catalog shared across the API and the worker.
"""

from .scenarios import (
    NEGATIVE_PROMPT,
    SAMPLE_SCENARIOS,
    SCENARIOS,
    get_available_scenarios,
    get_prompt_for_scenario,
    is_known_scenario,
)

__all__ = [
    "NEGATIVE_PROMPT",
    "SAMPLE_SCENARIOS",
    "SCENARIOS",
    "get_available_scenarios",
    "get_prompt_for_scenario",
    "is_known_scenario",
]
