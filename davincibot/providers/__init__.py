"""
Generation providers.
"""

from davincibot.providers.base import FAILURE_MARKER, GenerationProvider, is_failure
from davincibot.providers.openai import OpenAIProvider

__all__ = [
    "FAILURE_MARKER",
    "GenerationProvider",
    "OpenAIProvider",
    "is_failure",
]
