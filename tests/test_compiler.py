"""Tests for front matter parsing and prompt compilation."""

import pytest
from prompt_modules.compiler import FrontmatterPromptCompiler
from prompt_modules.compiler import parse_frontmatter
from prompt_modules.errors import MalformedSourceError


def test_parse_frontmatter():
    props, body = parse_frontmatter("---\nname: review\ntags: [a, b]\n---\nBody text\n")
    assert props == {"name": "review", "tags": ["a", "b"]}
    assert body == "Body text\n"


def test_text_without_frontmatter():
    props, body = parse_frontmatter("Just a body")
    assert props == {}
    assert body == "Just a body"


def test_non_mapping_frontmatter_is_malformed():
    with pytest.raises(MalformedSourceError, match="must be a mapping"):
        parse_frontmatter("---\n- a\n- b\n---\nbody")


def test_compile_normalizes_tags_and_version():
    compiler = FrontmatterPromptCompiler()
    element = compiler.compile("---\nname: x\ntags: one, two\nversion: 1.0\n---\nHi", "x.prompt")

    assert element.props["tags"] == ["one", "two"]
    assert element.props["version"] == "1.0"
    assert element.body == "Hi"
    assert element.filename == "x.prompt"


@pytest.mark.parametrize("raw,expected", [("5", ["5"]), ("true", ["True"]), ("[a, 2]", ["a", 2])])
def test_compile_wraps_scalar_tags(raw, expected):
    element = FrontmatterPromptCompiler().compile(f"---\nname: x\ntags: {raw}\n---\nHi", "x.prompt")
    assert element.props["tags"] == expected


def test_compile_error_names_file():
    compiler = FrontmatterPromptCompiler()
    with pytest.raises(MalformedSourceError, match="broken.prompt"):
        compiler.compile("---\nname: [unclosed\n---\nbody", "broken.prompt")
