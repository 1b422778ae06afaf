"""Building blocks shared with the rendering pipeline.

This package never renders anything. It only needs to recognise components
exported by a module and to hand compiled prompts upward as opaque elements.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any


class Component:
    """Base class for reusable prompt components.

    Modules expose components by exporting subclasses of this class; the
    rendering pipeline decides what instantiating and rendering them means.
    """

    name: str | None = None

    def __init__(self, **props: Any):
        self.props = props

    def render(self, context: Any = None) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not implement render()")


def is_component_class(value: Any) -> bool:
    """Check if value is a concrete Component subclass."""
    return isinstance(value, type) and issubclass(value, Component) and value is not Component


@dataclass
class PromptElement:
    """Render-tree handle produced by compiling one template source.

    Attributes:
        props: Metadata of the prompt (name, description, tags, version, ...)
        body: Template body following the metadata block
        filename: Source filename, when compiled from a file
    """

    props: dict[str, Any] = field(default_factory=dict)
    body: str = ""
    filename: str | None = None


def is_prompt_element(value: Any) -> bool:
    """Check if value is a PromptElement carrying a ``name`` prop."""
    return isinstance(value, PromptElement) and "name" in value.props
