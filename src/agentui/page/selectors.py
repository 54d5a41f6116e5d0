"""CSS selector matching for the page model.

Supports the subset of selectors the protocol addresses elements with:

- type selectors and ``*``
- ``#id`` and ``.class``
- attribute tests: ``[attr]``, ``[attr=v]``, ``[attr~=v]``, ``[attr^=v]``,
  ``[attr$=v]``, ``[attr*=v]``, ``[attr|=v]`` (quoted or bare values)
- ``:not(<compound>, ...)`` and ``:nth-child(<n>)``
- descendant (whitespace) and child (``>``) combinators
- selector lists separated by commas

Parsed selectors are cached; matching walks ancestors right-to-left.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from agentui.page.dom import Element


class SelectorSyntaxError(ValueError):
    """Raised when a selector cannot be parsed."""

    def __init__(self, selector: str, position: int, reason: str) -> None:
        self.selector = selector
        self.position = position
        super().__init__(f"Invalid selector {selector!r} at {position}: {reason}")


_IDENT_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
)
_ATTRIBUTE_OPERATORS = ("~=", "^=", "$=", "*=", "|=", "=")


@dataclass(frozen=True)
class AttributeTest:
    name: str
    operator: Optional[str] = None
    value: Optional[str] = None

    def matches(self, element: "Element") -> bool:
        actual = element.get_attribute(self.name)
        if actual is None:
            return False
        if self.operator is None:
            return True
        expected = self.value or ""
        if self.operator == "=":
            return actual == expected
        if self.operator == "~=":
            return expected in actual.split()
        if self.operator == "^=":
            return bool(expected) and actual.startswith(expected)
        if self.operator == "$=":
            return bool(expected) and actual.endswith(expected)
        if self.operator == "*=":
            return bool(expected) and expected in actual
        if self.operator == "|=":
            return actual == expected or actual.startswith(expected + "-")
        return False


@dataclass(frozen=True)
class CompoundSelector:
    tag: Optional[str] = None
    ids: Tuple[str, ...] = ()
    classes: Tuple[str, ...] = ()
    attributes: Tuple[AttributeTest, ...] = ()
    negations: Tuple["CompoundSelector", ...] = ()
    nth_child: Optional[int] = None

    def matches(self, element: "Element") -> bool:
        if self.tag is not None and self.tag != "*" and element.tag_name != self.tag:
            return False
        for ident in self.ids:
            if element.id != ident:
                return False
        if self.classes:
            own = set(element.class_list)
            if not all(cls in own for cls in self.classes):
                return False
        for test in self.attributes:
            if not test.matches(element):
                return False
        for negation in self.negations:
            if negation.matches(element):
                return False
        if self.nth_child is not None:
            parent = element.parent
            if parent is None or parent.children.index(element) + 1 != self.nth_child:
                return False
        return True


@dataclass(frozen=True)
class ComplexSelector:
    compounds: Tuple[CompoundSelector, ...]
    # combinators[i] joins compounds[i] and compounds[i + 1]
    combinators: Tuple[str, ...] = ()

    def matches(self, element: "Element") -> bool:
        return self._match_at(element, len(self.compounds) - 1)

    def _match_at(self, element: "Element", index: int) -> bool:
        if not self.compounds[index].matches(element):
            return False
        if index == 0:
            return True
        combinator = self.combinators[index - 1]
        parent = element.parent
        if combinator == ">":
            return parent is not None and self._match_at(parent, index - 1)
        while parent is not None:
            if self._match_at(parent, index - 1):
                return True
            parent = parent.parent
        return False


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def error(self, reason: str) -> SelectorSyntaxError:
        return SelectorSyntaxError(self.text, self.pos, reason)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_ws(self) -> bool:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1
        return self.pos > start

    def ident(self) -> str:
        start = self.pos
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.text):
                self.pos += 2
                continue
            if ch not in _IDENT_CHARS:
                break
            self.pos += 1
        if start == self.pos:
            raise self.error("expected identifier")
        return self.text[start:self.pos].replace("\\", "")

    def parse_list(self, terminator: str = "") -> Tuple[ComplexSelector, ...]:
        selectors: List[ComplexSelector] = []
        while True:
            self.skip_ws()
            selectors.append(self.parse_complex(terminator))
            self.skip_ws()
            ch = self.peek()
            if ch == ",":
                self.pos += 1
                continue
            if ch == terminator:
                return tuple(selectors)
            raise self.error(f"unexpected {ch!r}")

    def parse_complex(self, terminator: str) -> ComplexSelector:
        compounds = [self.parse_compound()]
        combinators: List[str] = []
        while True:
            had_ws = self.skip_ws()
            ch = self.peek()
            if ch in ("", ",", terminator):
                break
            if ch == ">":
                self.pos += 1
                self.skip_ws()
                combinators.append(">")
            elif had_ws:
                combinators.append(" ")
            else:
                raise self.error(f"unexpected {ch!r}")
            compounds.append(self.parse_compound())
        return ComplexSelector(tuple(compounds), tuple(combinators))

    def parse_compound(self) -> CompoundSelector:
        tag: Optional[str] = None
        ids: List[str] = []
        classes: List[str] = []
        attributes: List[AttributeTest] = []
        negations: List[CompoundSelector] = []
        nth_child: Optional[int] = None

        ch = self.peek()
        if ch == "*":
            self.pos += 1
            tag = "*"
        elif ch and ch in _IDENT_CHARS:
            tag = self.ident().lower()

        while True:
            ch = self.peek()
            if ch == "#":
                self.pos += 1
                ids.append(self.ident())
            elif ch == ".":
                self.pos += 1
                classes.append(self.ident())
            elif ch == "[":
                self.pos += 1
                attributes.append(self.parse_attribute())
            elif ch == ":":
                self.pos += 1
                name = self.ident().lower()
                if name == "nth-child":
                    nth_child = self.parse_nth()
                else:
                    negations.extend(self.parse_not(name))
            else:
                break

        if tag is None and not (ids or classes or attributes or negations) and nth_child is None:
            raise self.error("empty compound selector")
        return CompoundSelector(
            tag=tag,
            ids=tuple(ids),
            classes=tuple(classes),
            attributes=tuple(attributes),
            negations=tuple(negations),
            nth_child=nth_child,
        )

    def parse_attribute(self) -> AttributeTest:
        self.skip_ws()
        name = self.ident().lower()
        self.skip_ws()
        if self.peek() == "]":
            self.pos += 1
            return AttributeTest(name)
        operator = None
        for candidate in _ATTRIBUTE_OPERATORS:
            if self.text.startswith(candidate, self.pos):
                operator = candidate
                self.pos += len(candidate)
                break
        if operator is None:
            raise self.error("expected attribute operator")
        self.skip_ws()
        value = self.parse_value()
        self.skip_ws()
        if self.peek() != "]":
            raise self.error("expected ']'")
        self.pos += 1
        return AttributeTest(name, operator, value)

    def parse_value(self) -> str:
        quote = self.peek()
        if quote in ("'", '"'):
            end = self.text.find(quote, self.pos + 1)
            if end == -1:
                raise self.error("unterminated string")
            value = self.text[self.pos + 1:end]
            self.pos = end + 1
            return value
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] not in "] \t\n":
            self.pos += 1
        if start == self.pos:
            raise self.error("expected attribute value")
        return self.text[start:self.pos]

    def parse_nth(self) -> int:
        if self.peek() != "(":
            raise self.error("expected '(' after :nth-child")
        self.pos += 1
        self.skip_ws()
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos].isdigit():
            self.pos += 1
        if start == self.pos or int(self.text[start:self.pos]) < 1:
            raise self.error(":nth-child() takes a positive integer")
        index = int(self.text[start:self.pos])
        self.skip_ws()
        if self.peek() != ")":
            raise self.error("expected ')'")
        self.pos += 1
        return index

    def parse_not(self, name: str) -> List[CompoundSelector]:
        if name != "not" or self.peek() != "(":
            raise self.error(f"unsupported pseudo-class ':{name}'")
        self.pos += 1
        inner = self.parse_list(terminator=")")
        self.pos += 1
        negated: List[CompoundSelector] = []
        for selector in inner:
            if len(selector.compounds) != 1:
                raise self.error(":not() accepts compound selectors only")
            negated.append(selector.compounds[0])
        return negated


@lru_cache(maxsize=512)
def parse_selector(selector: str) -> Tuple[ComplexSelector, ...]:
    """Parse a selector list.

    Raises:
        SelectorSyntaxError: If the selector is malformed or unsupported
    """
    if not selector or not selector.strip():
        raise SelectorSyntaxError(selector, 0, "empty selector")
    parser = _Parser(selector.strip())
    result = parser.parse_list()
    if parser.pos != len(parser.text):
        raise parser.error("trailing input")
    return result


def matches(element: "Element", selector: str) -> bool:
    return any(c.matches(element) for c in parse_selector(selector))


def select_all(elements: Iterable["Element"], selector: str) -> List["Element"]:
    """Filter ``elements`` (in document order) to those matching ``selector``."""
    parsed = parse_selector(selector)
    return [el for el in elements if any(c.matches(el) for c in parsed)]
