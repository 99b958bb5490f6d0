"""Website niche classification.

The pattern scorer always runs. When an OpenAI key is configured its answer
is refined by the model; any model failure keeps the scorer's result.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from app.core.config import settings
from app.services.scanner.patterns import AVAILABLE_NICHES, NICHE_PATTERNS

logger = logging.getLogger(__name__)

MIN_SCORE = 3.0
URL_MATCH_WEIGHT = 2.0
KEYWORD_WEIGHT = 1.0
TECHNOLOGY_WEIGHT = 5.0


@dataclass
class CrawlSummary:
    website_url: str
    total_pages: int
    page_types: dict[str, int]
    url_patterns: list[str]
    title: str | None = None
    meta_description: str | None = None
    headings: list[dict[str, Any]] = field(default_factory=list)
    key_content: str = ""
    all_page_content: str = ""
    technologies: list[dict[str, Any]] = field(default_factory=list)
    existing_tracking: list[dict[str, Any]] = field(default_factory=list)

    @property
    def text(self) -> str:
        heading_text = " ".join(h.get("text", "") for h in self.headings)
        parts = [
            self.title or "",
            self.meta_description or "",
            heading_text,
            self.key_content,
            self.all_page_content,
        ]
        return " ".join(parts).lower()


@dataclass
class NicheSignal:
    type: str
    description: str
    weight: float


@dataclass
class NicheAnalysis:
    niche: str
    confidence: float
    sub_category: str | None = None
    reasoning: str = ""
    signals: list[NicheSignal] = field(default_factory=list)
    ai_used: bool = False

    def signal_dicts(self) -> list[dict[str, Any]]:
        return [asdict(s) for s in self.signals]

    def as_dict(self) -> dict[str, Any]:
        return {
            "niche": self.niche,
            "confidence": self.confidence,
            "subCategory": self.sub_category,
            "reasoning": self.reasoning,
            "signals": self.signal_dicts(),
            "aiUsed": self.ai_used,
        }


def score_niches(summary: CrawlSummary) -> dict[str, tuple[float, list[NicheSignal]]]:
    """Score every pattern niche from URLs, content keywords, page types and technologies."""
    text = summary.text
    tech_names = {t.get("name") for t in summary.technologies}
    scores: dict[str, tuple[float, list[NicheSignal]]] = {}

    for pattern in NICHE_PATTERNS:
        score = 0.0
        signals: list[NicheSignal] = []

        url_hits = sum(
            1 for url in summary.url_patterns if any(p.search(url) for p in pattern.url_patterns)
        )
        if url_hits:
            weight = min(url_hits, 5) * URL_MATCH_WEIGHT
            score += weight
            signals.append(NicheSignal("url_pattern", f"{url_hits} matching URLs", weight))

        keywords = [k for k in pattern.content_keywords if k in text]
        if keywords:
            weight = len(keywords) * KEYWORD_WEIGHT
            score += weight
            signals.append(NicheSignal("content", "Keywords: " + ", ".join(keywords[:5]), weight))

        for page_type, type_weight in pattern.page_type_weights.items():
            count = summary.page_types.get(page_type, 0)
            if count:
                weight = float(type_weight * min(count, 3))
                score += weight
                signals.append(NicheSignal("page_structure", f"{count} {page_type} pages", weight))

        for tech in pattern.technologies:
            if tech in tech_names:
                score += TECHNOLOGY_WEIGHT
                signals.append(NicheSignal("technology", f"Uses {tech}", TECHNOLOGY_WEIGHT))

        scores[pattern.niche] = (score, signals)
    return scores


def classify_by_patterns(summary: CrawlSummary) -> NicheAnalysis:
    scores = score_niches(summary)
    total = sum(score for score, _ in scores.values())
    niche, (best, signals) = max(scores.items(), key=lambda item: item[1][0])

    if best < MIN_SCORE or total <= 0:
        return NicheAnalysis(
            niche="other",
            confidence=0.3,
            reasoning="No niche pattern scored high enough",
            signals=signals,
        )

    pattern = next(p for p in NICHE_PATTERNS if p.niche == niche)
    text = summary.text
    sub_category = next((s for s in pattern.sub_categories if s.replace("-", " ") in text), None)
    confidence = round(min(0.95, max(0.4, best / total)), 2)
    return NicheAnalysis(
        niche=niche,
        confidence=confidence,
        sub_category=sub_category,
        reasoning=f"Pattern score {best:.0f} of {total:.0f} across all niches",
        signals=sorted(signals, key=lambda s: s.weight, reverse=True),
    )


NICHE_PROMPT = """Classify this website into one industry niche.

Allowed niches: {niches}

Website: {url}
Pages crawled: {total_pages}
Page types: {page_types}
URL paths: {url_patterns}
Title: {title}
Meta description: {description}
Headings: {headings}
Content: {content}
Technologies: {technologies}

Rule-based guess: {guess} (confidence {confidence})

Reply with JSON: {{"niche": str, "subCategory": str | null, "confidence": number 0-1,
"reasoning": str, "signals": [{{"type": str, "description": str, "weight": number}}]}}"""


class NicheDetector:
    """Pattern scorer plus optional LLM refinement."""

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        if client is None and settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client

    @property
    def ai_available(self) -> bool:
        return self.client is not None

    async def detect(self, summary: CrawlSummary) -> NicheAnalysis:
        fallback = classify_by_patterns(summary)
        if self.client is None:
            return fallback

        try:
            refined = await self._refine(self.client, summary, fallback)
        except (OpenAIError, ValueError, KeyError, TypeError) as e:
            logger.warning("LLM niche detection failed, using pattern result: %s", e)
            return fallback
        return refined or fallback

    async def _refine(
        self, client: AsyncOpenAI, summary: CrawlSummary, guess: NicheAnalysis
    ) -> NicheAnalysis | None:
        prompt = NICHE_PROMPT.format(
            niches=", ".join(AVAILABLE_NICHES),
            url=summary.website_url,
            total_pages=summary.total_pages,
            page_types=json.dumps(summary.page_types),
            url_patterns=", ".join(summary.url_patterns[:20]),
            title=summary.title or "N/A",
            description=summary.meta_description or "N/A",
            headings="; ".join(h.get("text", "") for h in summary.headings[:10]),
            content=summary.key_content[:500],
            technologies=", ".join(t.get("name", "") for t in summary.technologies) or "None",
            guess=guess.niche,
            confidence=guess.confidence,
        )
        response = await client.chat.completions.create(
            model=settings.openai_model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0,
        )
        content = response.choices[0].message.content
        if not content:
            return None

        data = json.loads(content)
        niche = data["niche"]
        if niche not in AVAILABLE_NICHES:
            logger.info("LLM returned unknown niche %r, keeping %s", niche, guess.niche)
            return None
        return NicheAnalysis(
            niche=niche,
            confidence=float(min(1.0, max(0.0, data.get("confidence", guess.confidence)))),
            sub_category=data.get("subCategory"),
            reasoning=str(data.get("reasoning", "")),
            signals=[
                NicheSignal(str(s["type"]), str(s["description"]), float(s.get("weight", 1)))
                for s in data.get("signals", [])
            ]
            or guess.signals,
            ai_used=True,
        )
