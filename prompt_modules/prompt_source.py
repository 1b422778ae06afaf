"""Prompt source abstraction."""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass

PROMPT_EXTENSION = ".prompt"
DEFAULT_PROMPT_DIRS = ["prompts"]


@dataclass
class DiscoveredPromptFile:
    """Raw template file found by a prompt source, before compilation."""

    filename: str
    content: str


class PromptSource(ABC):
    """A place template files can be discovered."""

    @abstractmethod
    async def get_prompts(self) -> list[DiscoveredPromptFile]:
        """Discover template files. May perform I/O and may fail."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
