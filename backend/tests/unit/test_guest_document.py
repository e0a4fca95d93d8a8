"""
Unit tests for the markup/style model used inside the sandbox.
"""

import pytest

from app.infrastructure.sandbox.guest.document import (
    DocumentView,
    Stylesheet,
    build_document,
    parse_declarations,
    specificity,
)


class TestSpecificity:

    @pytest.mark.parametrize("selector,expected", [
        ("h1", (0, 0, 1)),
        (".title", (0, 1, 0)),
        ("#main", (1, 0, 0)),
        ("div > p.note", (0, 1, 2)),
        ("a:hover", (0, 1, 1)),
        ("input[type=text]", (0, 1, 1)),
        ("p::first-line", (0, 0, 2)),
        ("#nav ul li.active", (1, 1, 2)),
    ])
    def test_specificity(self, selector, expected):
        assert specificity(selector) == expected


class TestParseDeclarations:

    def test_basic(self):
        declarations, important = parse_declarations("color: red; Margin : 0 auto ;")
        assert declarations == {"color": "red", "margin": "0 auto"}
        assert important == set()

    def test_important(self):
        declarations, important = parse_declarations("color: red !important")
        assert declarations == {"color": "red"}
        assert important == {"color"}

    def test_garbage_skipped(self):
        declarations, _ = parse_declarations("nonsense; : empty; width:")
        assert declarations == {}


class TestStylesheet:
    """Test parsing and the cascade."""

    def test_parse_rules_and_selector_lists(self):
        sheet = Stylesheet.parse("/* c */ h1, h2 { color: red } p { margin: 0 }")
        assert [r.selector for r in sheet] == ["h1", "h2", "p"]
        assert sheet.get("h2", "color") == "red"

    def test_at_rules_skipped(self):
        css = (
            "@import url(x.css);\n"
            "@media (max-width: 600px) { h1 { color: blue } }\n"
            "h1 { color: red }"
        )
        sheet = Stylesheet.parse(css)
        assert len(sheet) == 1
        assert sheet.get("h1", "color") == "red"

    def test_specificity_beats_order(self):
        document = build_document('<h1 id="t" class="big">x</h1>')
        sheet = Stylesheet.parse("#t { color: blue } .big { color: green } h1 { color: red }")
        assert sheet.computed(document.h1, "color") == "blue"

    def test_later_rule_wins_on_equal_specificity(self):
        document = build_document("<p>x</p>")
        sheet = Stylesheet.parse("p { color: red } p { color: green }")
        assert sheet.computed(document.p, "color") == "green"

    def test_inline_style_beats_rules(self):
        document = build_document('<p id="x" style="color: pink">x</p>')
        sheet = Stylesheet.parse("#x { color: red }")
        assert sheet.computed(document.p, "color") == "pink"

    def test_important_beats_inline(self):
        document = build_document('<p style="color: pink">x</p>')
        sheet = Stylesheet.parse("p { color: red !important }")
        assert sheet.computed(document.p, "color") == "red"

    def test_unmatched_property_is_none(self):
        document = build_document("<p>x</p>")
        assert Stylesheet.parse("p { color: red }").computed(document.p, "margin") is None

    def test_unsupported_selector_ignored(self):
        document = build_document("<p>x</p>")
        sheet = Stylesheet.parse("p::before { content: 'x' } p { color: red }")
        assert sheet.computed(document.p, "color") == "red"


class TestDocumentView:

    def setup_method(self):
        document = build_document("<main><p class='a'>one</p><p>two</p></main>")
        self.view = DocumentView(document, Stylesheet.parse(".a { color: red }"))

    def test_query(self):
        assert self.view.query("p.a").get_text() == "one"
        assert self.view.query("h1") is None

    def test_query_all(self):
        assert [p.get_text() for p in self.view.query_all("main p")] == ["one", "two"]

    def test_computed_style_by_selector(self):
        assert self.view.computed_style("p.a", "color") == "red"
        assert self.view.computed_style("h1", "color") is None
