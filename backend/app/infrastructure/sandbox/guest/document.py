"""
Markup and style channels as inspectable objects.

The markup becomes a BeautifulSoup tree (``document``) and the style channel
a parsed ``Stylesheet`` that can resolve the cascaded value of a property
for an element. At-rule blocks (``@media``, ``@keyframes``, ...) are skipped:
the sandbox has no viewport to evaluate them against.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

import soupsieve
from bs4 import BeautifulSoup, Tag

_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_IMPORTANT_RE = re.compile(r"\s*!\s*important\s*$", re.IGNORECASE)

_ATTR_RE = re.compile(r"\[[^\]]*\]")
_PSEUDO_ELEMENT_RE = re.compile(r"::[\w-]+")
_PSEUDO_CLASS_RE = re.compile(r":[\w-]+(?:\([^)]*\))?")
_ID_RE = re.compile(r"#[\w-]+")
_CLASS_RE = re.compile(r"\.[\w-]+")
_TYPE_RE = re.compile(r"(?:^|[\s>+~(])([a-zA-Z][\w-]*)")

Specificity = Tuple[int, int, int]


def build_document(markup: str) -> BeautifulSoup:
    """Parse the markup channel with the stdlib-backed html.parser builder."""
    return BeautifulSoup(markup or "", "html.parser")


def specificity(selector: str) -> Specificity:
    """(ids, classes/attributes/pseudo-classes, types/pseudo-elements)."""
    rest = selector
    attrs = len(_ATTR_RE.findall(rest))
    rest = _ATTR_RE.sub(" ", rest)
    pseudo_elements = len(_PSEUDO_ELEMENT_RE.findall(rest))
    rest = _PSEUDO_ELEMENT_RE.sub(" ", rest)
    pseudo_classes = len(_PSEUDO_CLASS_RE.findall(rest))
    rest = _PSEUDO_CLASS_RE.sub(" ", rest)
    ids = len(_ID_RE.findall(rest))
    rest = _ID_RE.sub(" ", rest)
    classes = len(_CLASS_RE.findall(rest))
    rest = _CLASS_RE.sub(" ", rest)
    types = len(_TYPE_RE.findall(rest))
    return (ids, classes + attrs + pseudo_classes, types + pseudo_elements)


def parse_declarations(body: str) -> Tuple[Dict[str, str], Set[str]]:
    """Parse ``prop: value; ...`` into (declarations, important property names)."""
    declarations: Dict[str, str] = {}
    important: Set[str] = set()
    for chunk in body.split(";"):
        if ":" not in chunk:
            continue
        prop, value = chunk.split(":", 1)
        prop = prop.strip().lower()
        value = value.strip()
        if not prop or not value:
            continue
        if _IMPORTANT_RE.search(value):
            value = _IMPORTANT_RE.sub("", value)
            important.add(prop)
        else:
            important.discard(prop)
        declarations[prop] = value
    return declarations, important


def _split_selectors(prelude: str) -> List[str]:
    """Split a selector list on top-level commas."""
    selectors, depth, current = [], 0, []
    for char in prelude:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth = max(0, depth - 1)
        if char == "," and depth == 0:
            selectors.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    selectors.append("".join(current).strip())
    return [s for s in selectors if s]


@dataclass
class StyleRule:
    """One selector with its declaration block."""
    selector: str
    declarations: Dict[str, str]
    important: Set[str] = field(default_factory=set)
    order: int = 0

    @property
    def specificity(self) -> Specificity:
        return specificity(self.selector)


class Stylesheet:
    """Ordered CSS rules with a simplified cascade."""

    def __init__(self, rules: Optional[List[StyleRule]] = None):
        self.rules: List[StyleRule] = rules or []
        self._compiled: Dict[str, Optional[soupsieve.SoupSieve]] = {}

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    @classmethod
    def parse(cls, css: str) -> "Stylesheet":
        css = _COMMENT_RE.sub("", css or "")
        rules: List[StyleRule] = []
        pos, length = 0, len(css)

        while pos < length:
            brace = css.find("{", pos)
            if brace == -1:
                break
            # Statement at-rules (``@import ...;``) end with a semicolon
            prelude = css[pos:brace].split(";")[-1].strip()

            depth, cursor = 1, brace + 1
            while cursor < length and depth:
                if css[cursor] == "{":
                    depth += 1
                elif css[cursor] == "}":
                    depth -= 1
                cursor += 1
            body = css[brace + 1:cursor - 1]
            pos = cursor

            if not prelude or prelude.startswith("@"):
                continue

            declarations, important = parse_declarations(body)
            for selector in _split_selectors(prelude):
                rules.append(StyleRule(
                    selector=selector,
                    declarations=dict(declarations),
                    important=set(important),
                    order=len(rules),
                ))

        return cls(rules)

    def rules_for(self, selector: str) -> List[StyleRule]:
        """Rules declared with exactly this selector, in source order."""
        wanted = " ".join(selector.split())
        return [r for r in self.rules if " ".join(r.selector.split()) == wanted]

    def get(self, selector: str, prop: str) -> Optional[str]:
        """Last value declared for ``prop`` under exactly ``selector``."""
        value = None
        for rule in self.rules_for(selector):
            value = rule.declarations.get(prop.lower(), value)
        return value

    def _matcher(self, selector: str) -> Optional[soupsieve.SoupSieve]:
        if selector not in self._compiled:
            try:
                self._compiled[selector] = soupsieve.compile(selector)
            except Exception:
                # Pseudo-elements and other selectors soupsieve cannot match
                self._compiled[selector] = None
        return self._compiled[selector]

    def matching_rules(self, element: Tag) -> List[StyleRule]:
        matched = []
        for rule in self.rules:
            matcher = self._matcher(rule.selector)
            if matcher is not None and matcher.match(element):
                matched.append(rule)
        return matched

    def computed(self, element: Tag, prop: str) -> Optional[str]:
        """
        Cascaded value of ``prop`` for ``element``.

        Precedence: ``!important`` first, then inline ``style`` attributes,
        then selector specificity, then source order.
        """
        prop = prop.lower()
        candidates: List[Tuple[tuple, str]] = []

        for rule in self.matching_rules(element):
            if prop in rule.declarations:
                key = (prop in rule.important, False, rule.specificity, rule.order)
                candidates.append((key, rule.declarations[prop]))

        inline, inline_important = parse_declarations(element.get("style", "") or "")
        if prop in inline:
            key = (prop in inline_important, True, (0, 0, 0), len(self.rules))
            candidates.append((key, inline[prop]))

        if not candidates:
            return None
        return max(candidates, key=lambda c: c[0])[1]


class DocumentView:
    """Query helpers bound to one document and stylesheet."""

    def __init__(self, document: BeautifulSoup, styles: Stylesheet):
        self.document = document
        self.styles = styles

    def query(self, selector: str) -> Optional[Tag]:
        return self.document.select_one(selector)

    def query_all(self, selector: str) -> List[Tag]:
        return self.document.select(selector)

    def computed_style(self, target: Union[Tag, str], prop: str) -> Optional[str]:
        element = self.query(target) if isinstance(target, str) else target
        if element is None:
            return None
        return self.styles.computed(element, prop)
