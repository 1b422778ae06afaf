"""Compile template source text into prompt elements.

The default compiler understands YAML front matter:

    ---
    name: code-review
    description: Review a change
    tags: [review, code]
    version: 1.0.0
    ---
    Body of the template...
"""

from __future__ import annotations

import logging
import re
from typing import Any
from typing import Protocol

import yaml

from .elements import PromptElement
from .errors import MalformedSourceError

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


class PromptCompiler(Protocol):
    """Capability that turns template source into a render-tree handle."""

    def compile(self, content: str, filename: str) -> PromptElement: ...


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split YAML front matter from the body.

    Returns:
        Tuple of (frontmatter dict, body). Text without front matter yields an
        empty dict and the full text.

    Raises:
        MalformedSourceError: Front matter is not a YAML mapping
    """
    match = _FRONTMATTER.match(text)
    if not match:
        return {}, text

    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise MalformedSourceError(f"Invalid front matter YAML: {e}") from e
    if not isinstance(data, dict):
        raise MalformedSourceError(f"Front matter must be a mapping, got {type(data).__name__}")

    return data, text[match.end() :]


class FrontmatterPromptCompiler:
    """Compiles templates whose metadata lives in YAML front matter."""

    def compile(self, content: str, filename: str) -> PromptElement:
        try:
            props, body = parse_frontmatter(content)
        except MalformedSourceError as e:
            raise e.with_context(filename) from e

        tags = props.get("tags")
        if isinstance(tags, str):
            props["tags"] = [tag.strip() for tag in tags.split(",") if tag.strip()]
        elif tags is not None and not isinstance(tags, list):
            props["tags"] = [str(tags)]
        if "version" in props and props["version"] is not None:
            # YAML reads 1.0 as a float
            props["version"] = str(props["version"])

        logger.debug(f"Compiled {filename} ({len(body)} chars, props: {sorted(props)})")
        return PromptElement(props=props, body=body, filename=filename)
