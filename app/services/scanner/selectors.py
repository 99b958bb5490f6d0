"""CSS selector generation for extracted elements, ranked by confidence.

Priority: id, data attribute, name, non-generic class, aria-label, then
structural. Elements with only text get a ``:contains()`` fallback.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.services.scanner.crawler import ExtractedElement

_GENERIC_CLASS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(container|wrapper|row|col|flex|grid|block|section|content|inner|outer)$",
        r"^(mt|mb|ml|mr|mx|my|pt|pb|pl|pr|px|py|m|p)-",
        r"^(w|h|min|max)-",
        r"^(text|font|bg|border|rounded|shadow|opacity)-",
        r"^(sm|md|lg|xl|2xl):",
        r"^(hover|focus|active|disabled):",
        r"^(d|display|position|float|clear|overflow|visibility)-",
        r"^(hidden|visible|relative|absolute|fixed|sticky)$",
        r"^(active|selected|open|closed|expanded|collapsed)$",
    )
]
_DOWNLOAD_EXT = re.compile(r"\.(pdf|doc|docx|xls|xlsx|zip)$", re.IGNORECASE)
_CSS_SPECIAL = re.compile(r"([^\w-])")


@dataclass
class SelectorCandidate:
    selector: str
    confidence: float
    method: str


@dataclass
class SelectorConfig:
    selectors: list[SelectorCandidate] = field(default_factory=list)
    fallbacks: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "selectors": [
                {"selector": c.selector, "confidence": c.confidence, "method": c.method}
                for c in self.selectors
            ],
            "fallbacks": list(self.fallbacks),
        }


def css_escape(value: str) -> str:
    return _CSS_SPECIAL.sub(r"\\\1", value)


def is_generic_class(name: str) -> bool:
    return any(p.search(name) for p in _GENERIC_CLASS_PATTERNS)


def generate_selector(element: "ExtractedElement") -> SelectorConfig:
    config = SelectorConfig()
    tag = element.tag_name

    if element.id:
        config.selectors.append(SelectorCandidate(f"#{css_escape(element.id)}", 0.95, "id"))

    for key, value in element.data_attributes.items():
        if key.startswith("data-") and value:
            config.selectors.append(
                SelectorCandidate(f'[{key}="{css_escape(value)}"]', 0.85, "data-attr")
            )
            break

    if element.name and tag in ("input", "form"):
        config.selectors.append(
            SelectorCandidate(f'{tag}[name="{css_escape(element.name)}"]', 0.85, "data-attr")
        )

    classes = [c for c in element.class_name.split() if c and not is_generic_class(c)]
    if classes:
        config.selectors.append(
            SelectorCandidate(f"{tag}.{css_escape(classes[0])}", 0.7, "unique-class")
        )

    if element.aria_label:
        config.selectors.append(
            SelectorCandidate(
                f'{tag}[aria-label="{css_escape(element.aria_label)}"]', 0.75, "aria"
            )
        )

    if not config.selectors:
        structural = _structural_selector(element)
        if structural:
            config.selectors.append(SelectorCandidate(structural, 0.4, "structural"))

    if element.text and len(element.text) <= 50:
        config.fallbacks.append(f'{tag}:contains("{element.text[:30]}")')

    config.selectors.sort(key=lambda c: c.confidence, reverse=True)
    return config


def best_selector(config: SelectorConfig) -> tuple[str, float] | None:
    """Highest-confidence selector, else the text fallback at 0.3."""
    if config.selectors:
        top = config.selectors[0]
        return top.selector, top.confidence
    if config.fallbacks:
        return config.fallbacks[0], 0.3
    return None


def _structural_selector(element: "ExtractedElement") -> str | None:
    href = element.href or ""
    if href.startswith("tel:"):
        return 'a[href^="tel:"]'
    if href.startswith("mailto:"):
        return 'a[href^="mailto:"]'
    match = _DOWNLOAD_EXT.search(href)
    if match:
        return f'a[href$=".{match.group(1).lower()}"]'
    if element.type:
        return f'{element.tag_name}[type="{element.type}"]'
    return None
