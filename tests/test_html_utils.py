from pathlib import Path

import pytest

from nucleusflow.assets import AssetProcessorRegistry, ImageProcessor, create_default_registry
from nucleusflow.html_utils import (
    HtmlStructureValidator,
    escape_html,
    html_stats,
    inject_metadata,
    minify_html,
    pretty_print_html,
    strip_meta_tags,
)


def test_escape_html():
    assert escape_html('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"


def test_inject_metadata_wraps_fragment():
    html = inject_metadata("<p>x</p>", {"title": "A & B", "tags": ["a", "b"]})
    assert html.startswith("<!DOCTYPE html>")
    assert '<meta charset="utf-8">' in html
    assert "<title>A &amp; B</title>" in html
    assert '<meta name="tags" content="a, b">' in html
    assert "<body>\n<p>x</p>\n</body>" in html


def test_inject_metadata_keeps_existing_tags():
    doc = (
        '<html><head><title>Own</title><meta name="description" content="old"></head>'
        "<body></body></html>"
    )
    html = inject_metadata(doc, {"title": "New", "description": "new"})
    assert html.count("<title>") == 1
    assert "Own" in html
    assert 'content="new"' not in html


def test_strip_meta_tags_keeps_charset():
    assert strip_meta_tags('<meta charset="utf-8"><meta name="a" content="b">') == '<meta charset="utf-8">'


def test_minify_drops_comments_and_block_whitespace():
    assert minify_html("<!-- c --><div>\n  <p>a   b</p>\n</div>") == "<div><p>a b</p></div>"


def test_pretty_print_indents_blocks():
    assert pretty_print_html("<div><p>a</p></div>") == "<div>\n  <p>\n    a\n  </p>\n</div>\n"


def test_html_stats():
    assert html_stats("<p>a</p>\n") == {"tag_count": 2, "size_bytes": 9, "line_count": 1}


@pytest.mark.parametrize(
    "html, problems",
    [
        ("<ul><li>a<li>b</ul><br>", 0),
        ("<div><span></div>", 1),
        ("<p></div>", 1),
        ("<section><div>", 1),
    ],
)
def test_structure_validator(html, problems):
    assert len(HtmlStructureValidator().check(html)) == problems


def test_structure_validator_reports_messages():
    validator = HtmlStructureValidator()
    [error] = validator.check("<div><span></div>")
    assert "<span> closed implicitly by </div>" in error
    assert validator.tags == ["div", "span"]


def test_registry_selects_by_priority(tmp_path: Path):
    registry = create_default_registry()
    assert registry.get_processor(Path("a.png")).name == "image"
    assert registry.get_processor(Path("a.CSS")).name == "css"
    assert registry.get_processor(Path("a.js")).name == "js"
    assert registry.get_processor(Path("a.txt")).name == "static"
    assert create_default_registry(minify=False).get_processor(Path("a.css")).name == "static"

    css = tmp_path / "site.css"
    css.write_text("p { margin: 0; }\n", encoding="utf-8")
    assert registry.process(css) == ("css", b"p{margin:0}")


def test_empty_registry_raises_lookup_error(tmp_path: Path):
    with pytest.raises(LookupError):
        AssetProcessorRegistry().process(tmp_path / "a.txt")


def test_undecodable_image_passes_through(tmp_path: Path):
    broken = tmp_path / "broken.png"
    broken.write_bytes(b"not an image")
    assert ImageProcessor().process(broken) == b"not an image"
