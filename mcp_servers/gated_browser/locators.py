"""
Self-healing element locators.

When a primary selector stops matching, ranked fallback selectors are derived
from what the selector was apparently targeting:

- attribute: id, test ids, aria/name attributes, meaningful classes
- text: exact / partial text (XPath), placeholder, value
- semantic: aria-label, role, title, alt, input type
- position: nth-child / nth-of-type (least stable, lowest confidence)

Resolution never raises for a missing element; callers get LocatorNotFound and
can ask for fallback_summary() to build diagnostics.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from . import js_snippets
from .page import ElementHandle, PageProvider

logger = logging.getLogger("mcp.gated_browser.locators")

MIN_CONFIDENCE = 0.3
MAX_FALLBACKS = 10

FallbackType = Literal["attribute", "text", "position", "semantic", "visual"]

HIGH_CONFIDENCE_ATTRIBUTES = (
    "id",
    "data-testid",
    "data-test-id",
    "data-cy",
    "data-test",
    "aria-label",
    "aria-labelledby",
    "name",
    "data-automation",
    "data-qa",
    "data-selector",
)

UTILITY_CLASS_PATTERNS = (
    re.compile(r"^(m|p|mt|mb|ml|mr|pt|pb|pl|pr|mx|my|px|py)-?\d+$"),
    re.compile(r"^(text|bg|border)-(primary|secondary|danger|warning|info|success|light|dark|white|black)$"),
    re.compile(r"^(d|display)-(none|block|inline|flex|grid)$"),
    re.compile(r"^(w|h)-\d+$"),
    re.compile(r"^(btn|button)-(sm|md|lg|xl)$"),
)

MEANINGFUL_CLASS_PATTERNS = (
    re.compile(r"^(nav|menu|header|footer|sidebar|content|main|article)"),
    re.compile(r"^(form|input|button|link|modal|dialog)"),
    re.compile(r"^(auth|login|signin|signup|register)"),
    re.compile(r"^(search|filter|sort|toggle)"),
    re.compile(r"(container|wrapper|section|panel|card)$"),
)

_SELECTOR_TAG = re.compile(r"^[a-zA-Z]+")
_SELECTOR_ID = re.compile(r"#([^.\[\s]+)")
_SELECTOR_CLASS = re.compile(r"\.([^#.\[\s]+)")


def is_utility_class(name: str) -> bool:
    return any(p.search(name) for p in UTILITY_CLASS_PATTERNS)


def is_meaningful_class(name: str) -> bool:
    return any(p.search(name.lower()) for p in MEANINGFUL_CLASS_PATTERNS)


def css_value(value: str) -> str:
    """Quote a value for use inside ``[attr="..."]``."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def xpath_literal(value: str) -> str:
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


@dataclass(frozen=True)
class SelectorFallback:
    selector: str
    type: FallbackType
    confidence: float
    description: str
    strategy: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "type": self.type,
            "confidence": self.confidence,
            "description": self.description,
            "strategy": self.strategy,
        }


@dataclass(frozen=True)
class ElementPosition:
    parent_selector: str
    child_index: int
    sibling_index: int


@dataclass
class ElementInfo:
    tag_name: str
    id: str | None = None
    class_name: str | None = None
    name: str | None = None
    placeholder: str | None = None
    aria_label: str | None = None
    role: str | None = None
    data_test_id: str | None = None
    text_content: str | None = None
    value: str | None = None
    type: str | None = None
    href: str | None = None
    src: str | None = None
    title: str | None = None
    alt: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    position: ElementPosition | None = None

    @property
    def classes(self) -> list[str]:
        return [c for c in (self.class_name or "").split() if c]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElementInfo:
        def _str(key: str) -> str | None:
            value = data.get(key)
            return str(value) if value not in (None, "") else None

        position = None
        raw_pos = data.get("position")
        if isinstance(raw_pos, dict) and raw_pos.get("parentSelector"):
            position = ElementPosition(
                parent_selector=str(raw_pos["parentSelector"]),
                child_index=int(raw_pos.get("childIndex") or 0),
                sibling_index=int(raw_pos.get("siblingIndex") or 0),
            )
        attributes = data.get("attributes") if isinstance(data.get("attributes"), dict) else {}
        return cls(
            tag_name=str(data.get("tagName") or "*").lower(),
            id=_str("id"),
            class_name=_str("className"),
            name=_str("name"),
            placeholder=_str("placeholder"),
            aria_label=_str("ariaLabel"),
            role=_str("ariaRole"),
            data_test_id=_str("dataTestId"),
            text_content=_str("textContent"),
            value=_str("value"),
            type=_str("type"),
            href=_str("href"),
            src=_str("src"),
            title=_str("title"),
            alt=_str("alt"),
            attributes={str(k): str(v) for k, v in attributes.items() if v},
            position=position,
        )


@dataclass(frozen=True)
class SelectorHints:
    tag: str | None
    id: str | None
    classes: tuple[str, ...]

    @classmethod
    def parse(cls, selector: str) -> SelectorHints:
        tag = _SELECTOR_TAG.match(selector)
        ident = _SELECTOR_ID.search(selector)
        return cls(
            tag=tag.group(0) if tag else None,
            id=ident.group(1) if ident else None,
            classes=tuple(_SELECTOR_CLASS.findall(selector)),
        )


@dataclass(frozen=True)
class LocatorMatch:
    element: ElementHandle
    used_selector: str
    strategy: str
    found: bool = True


@dataclass(frozen=True)
class LocatorNotFound:
    selector: str
    attempted: tuple[SelectorFallback, ...] = ()
    found: bool = False


LocatorResult = Union[LocatorMatch, LocatorNotFound]


class SelfHealingLocators:
    def __init__(self, min_confidence: float = MIN_CONFIDENCE, max_fallbacks: int = MAX_FALLBACKS) -> None:
        self.min_confidence = min_confidence
        self.max_fallbacks = max_fallbacks

    # Generation

    def generate_fallbacks(
        self, page: PageProvider, failed_selector: str, expected_text: str | None = None
    ) -> list[SelectorFallback]:
        """Ranked fallbacks: deduplicated, confidence >= min, descending, capped."""
        try:
            info = self.analyze_failed_selector(page, failed_selector, expected_text)
            if info is not None:
                candidates = [
                    *self.attribute_fallbacks(info),
                    *self.text_fallbacks(info),
                    *self.semantic_fallbacks(info),
                    *self.position_fallbacks(info),
                ]
            else:
                candidates = self.exploratory_fallbacks(page, failed_selector, expected_text)
        except Exception as exc:  # noqa: BLE001
            logger.warning("fallback_generation_failed selector=%s error=%s", failed_selector, exc)
            return []
        return self._rank(candidates, failed_selector)

    def _rank(self, candidates: list[SelectorFallback], failed_selector: str) -> list[SelectorFallback]:
        best: dict[str, SelectorFallback] = {}
        for fb in candidates:
            if fb.selector == failed_selector or fb.confidence < self.min_confidence:
                continue
            current = best.get(fb.selector)
            if current is None or fb.confidence > current.confidence:
                best[fb.selector] = fb
        # sorted() is stable: equal confidences keep generation order.
        ranked = sorted(best.values(), key=lambda fb: fb.confidence, reverse=True)
        return ranked[: self.max_fallbacks]

    def analyze_failed_selector(
        self, page: PageProvider, selector: str, expected_text: str | None
    ) -> ElementInfo | None:
        if not expected_text:
            return None
        try:
            data = page.evaluate(
                js_snippets.ANALYZE_FAILED_SELECTOR, selector, expected_text, list(HIGH_CONFIDENCE_ATTRIBUTES)
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("selector_analysis_failed selector=%s error=%s", selector, exc)
            return None
        if not isinstance(data, dict):
            return None
        return ElementInfo.from_dict(data)

    def attribute_fallbacks(self, info: ElementInfo) -> list[SelectorFallback]:
        out: list[SelectorFallback] = []
        tag = info.tag_name

        attributes = dict(info.attributes)
        # The scalar fields cover pages where the analysis script returned no attribute map.
        for attr, value in (
            ("id", info.id),
            ("data-testid", info.data_test_id),
            ("aria-label", info.aria_label),
            ("name", info.name),
        ):
            if value and attr not in attributes:
                attributes[attr] = value

        for attr in HIGH_CONFIDENCE_ATTRIBUTES:
            value = attributes.get(attr)
            if not value:
                continue
            out.append(
                SelectorFallback(
                    f"[{attr}={css_value(value)}]", "attribute", 0.9, f"Using {attr} attribute", f"attribute-{attr}"
                )
            )
            if tag and tag != "*":
                out.append(
                    SelectorFallback(
                        f"{tag}[{attr}={css_value(value)}]",
                        "attribute",
                        0.85,
                        f"Using {tag} with {attr} attribute",
                        f"tag-attribute-{attr}",
                    )
                )

        if info.id:
            out.append(SelectorFallback(f"#{info.id}", "attribute", 0.95, f"Using ID: {info.id}", "id"))

        if info.name:
            out.append(
                SelectorFallback(f"[name={css_value(info.name)}]", "attribute", 0.8, f"Using name: {info.name}", "name")
            )
            if tag and tag != "*":
                out.append(
                    SelectorFallback(
                        f"{tag}[name={css_value(info.name)}]",
                        "attribute",
                        0.75,
                        f"Using {tag} with name: {info.name}",
                        "tag-name",
                    )
                )

        classes = [c for c in info.classes if is_meaningful_class(c) or not is_utility_class(c)]
        for cls in classes[:3]:
            out.append(SelectorFallback(f".{cls}", "attribute", 0.6, f"Using class: {cls}", "class"))
            if tag and tag != "*":
                out.append(
                    SelectorFallback(f"{tag}.{cls}", "attribute", 0.65, f"Using {tag} with class: {cls}", "tag-class")
                )
        return out

    def text_fallbacks(self, info: ElementInfo) -> list[SelectorFallback]:
        out: list[SelectorFallback] = []
        text = (info.text_content or "").strip()
        if text:
            literal = xpath_literal(text)
            out.append(SelectorFallback(f"//*[text()={literal}]", "text", 0.8, f'Using exact text: "{text}"', "text-exact"))
            if len(text) > 10:
                partial = text[:20]
                out.append(
                    SelectorFallback(
                        f"//*[contains(text(), {xpath_literal(partial)})]",
                        "text",
                        0.7,
                        f'Using partial text: "{partial}"',
                        "text-partial",
                    )
                )
            if info.tag_name and info.tag_name != "*":
                out.append(
                    SelectorFallback(
                        f"//{info.tag_name}[text()={literal}]",
                        "text",
                        0.85,
                        f'Using {info.tag_name} with text: "{text}"',
                        "tag-text",
                    )
                )
        if info.placeholder:
            out.append(
                SelectorFallback(
                    f"[placeholder={css_value(info.placeholder)}]",
                    "text",
                    0.75,
                    f'Using placeholder: "{info.placeholder}"',
                    "placeholder",
                )
            )
        if info.value:
            out.append(
                SelectorFallback(f"[value={css_value(info.value)}]", "text", 0.6, f'Using value: "{info.value}"', "value")
            )
        return out

    def semantic_fallbacks(self, info: ElementInfo) -> list[SelectorFallback]:
        out: list[SelectorFallback] = []
        tag = info.tag_name
        if info.aria_label:
            out.append(
                SelectorFallback(
                    f"[aria-label={css_value(info.aria_label)}]",
                    "semantic",
                    0.85,
                    f'Using ARIA label: "{info.aria_label}"',
                    "aria-label",
                )
            )
        if info.role:
            out.append(
                SelectorFallback(
                    f"[role={css_value(info.role)}]", "semantic", 0.7, f"Using ARIA role: {info.role}", "aria-role"
                )
            )
            if tag and tag != "*":
                out.append(
                    SelectorFallback(
                        f"{tag}[role={css_value(info.role)}]",
                        "semantic",
                        0.75,
                        f"Using {tag} with role: {info.role}",
                        "tag-role",
                    )
                )
        if info.title:
            out.append(
                SelectorFallback(f"[title={css_value(info.title)}]", "semantic", 0.7, f'Using title: "{info.title}"', "title")
            )
        if info.alt:
            out.append(SelectorFallback(f"[alt={css_value(info.alt)}]", "semantic", 0.75, f'Using alt: "{info.alt}"', "alt"))
        if tag == "input" and info.type:
            out.append(
                SelectorFallback(
                    f"input[type={css_value(info.type)}]", "semantic", 0.6, f"Using input type: {info.type}", "input-type"
                )
            )
        return out

    def position_fallbacks(self, info: ElementInfo) -> list[SelectorFallback]:
        pos = info.position
        if pos is None:
            return []
        out = [
            SelectorFallback(
                f"{pos.parent_selector} > *:nth-child({pos.child_index + 1})",
                "position",
                0.4,
                f"Using parent-child position: {pos.child_index + 1}",
                "nth-child",
            )
        ]
        if info.tag_name and info.tag_name != "*":
            out.append(
                SelectorFallback(
                    f"{info.tag_name}:nth-of-type({pos.sibling_index + 1})",
                    "position",
                    0.35,
                    f"Using sibling position: {pos.sibling_index + 1}",
                    "nth-of-type",
                )
            )
        return out

    def exploratory_fallbacks(
        self, page: PageProvider, selector: str, expected_text: str | None
    ) -> list[SelectorFallback]:
        """Used when nothing on the page could be identified as the intended element."""
        out: list[SelectorFallback] = []
        hints = SelectorHints.parse(selector)

        if hints.id:
            without_id = _SELECTOR_ID.sub("", selector).strip()
            if without_id and without_id != selector:
                out.append(SelectorFallback(without_id, "attribute", 0.5, "Trying selector without ID", "remove-id"))

        if len(hints.classes) > 1:
            for cls in hints.classes:
                out.append(SelectorFallback(f".{cls}", "attribute", 0.4, f"Trying single class: {cls}", "single-class"))

        if expected_text:
            out.extend(self.text_search_fallbacks(page, expected_text))
        return out

    def text_search_fallbacks(self, page: PageProvider, text: str) -> list[SelectorFallback]:
        try:
            candidates = page.evaluate(js_snippets.FIND_BY_TEXT, text) or []
        except Exception as exc:  # noqa: BLE001
            logger.warning("text_search_failed text=%r error=%s", text, exc)
            return []

        out: list[SelectorFallback] = []
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            tag = str(candidate.get("tagName") or "").lower()
            ident = candidate.get("id")
            if ident:
                out.append(SelectorFallback(f"#{ident}", "text", 0.6, f"Found by text, using ID: {ident}", "text-search-id"))
            class_name = str(candidate.get("className") or "").split()
            if class_name:
                first = class_name[0]
                out.append(
                    SelectorFallback(f".{first}", "text", 0.4, f"Found by text, using class: {first}", "text-search-class")
                )
            if tag:
                out.append(SelectorFallback(tag, "text", 0.3, f"Found by text, using tag: {tag}", "text-search-tag"))
        return out

    # Resolution

    def find_element_with_fallbacks(
        self, page: PageProvider, selector: str, expected_text: str | None = None
    ) -> LocatorResult:
        element = self._query(page, selector)
        if element is not None:
            return LocatorMatch(element, selector, "primary")

        fallbacks = self.generate_fallbacks(page, selector, expected_text)
        needle = (expected_text or "").lower()
        for fb in fallbacks:
            element = self._query(page, fb.selector)
            if element is None:
                continue
            if needle:
                try:
                    text = str(element.evaluate(js_snippets.ELEMENT_MATCH_TEXT_ON_ELEMENT) or "")
                except Exception:  # noqa: BLE001
                    continue
                if needle not in text:
                    continue
            logger.warning(
                "self_healing_hit primary=%s fallback=%s type=%s confidence=%s",
                selector,
                fb.selector,
                fb.type,
                fb.confidence,
            )
            return LocatorMatch(element, fb.selector, fb.type)

        logger.info("self_healing_miss selector=%s attempted=%s", selector, len(fallbacks))
        return LocatorNotFound(selector, tuple(fallbacks))

    @staticmethod
    def _query(page: PageProvider, selector: str) -> ElementHandle | None:
        try:
            return page.query_selector(selector)
        except Exception as exc:  # noqa: BLE001
            if "session closed" in str(exc).lower():
                raise
            return None

    def fallback_summary(self, page: PageProvider, selector: str, expected_text: str | None = None) -> str:
        fallbacks = self.generate_fallbacks(page, selector, expected_text)
        if not fallbacks:
            return f"No fallback selectors generated for: {selector}"
        lines = [
            f"{i}. {fb.selector} ({fb.type}, confidence: {fb.confidence}, {fb.strategy})"
            for i, fb in enumerate(fallbacks[:5], start=1)
        ]
        return f"\nSelf-Healing Fallback Selectors for: {selector}\n" + "\n".join(lines)
