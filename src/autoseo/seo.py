from __future__ import annotations

import re
from dataclasses import dataclass, field

_H1 = re.compile(r"^# .+$", re.MULTILINE)
_H2 = re.compile(r"^## .+$", re.MULTILINE)
_H3 = re.compile(r"^### .+$", re.MULTILINE)
_INTERNAL_LINK = re.compile(r"\[[^\]]+\]\(/[^)]*\)")
_EXTERNAL_LINK = re.compile(r"\[[^\]]+\]\(https?://[^)]*\)")

MIN_DENSITY = 0.5
MAX_DENSITY = 3.0
MIN_WORDS = 300
LONG_FORM_WORDS = 1000


@dataclass(frozen=True)
class SeoIssue:
    type: str
    message: str


@dataclass(frozen=True)
class SeoAnalysis:
    score: int
    word_count: int
    heading_count: int
    paragraph_count: int
    internal_links: int
    external_links: int
    keyword_density: float
    issues: list[SeoIssue] = field(default_factory=list)


def count_words(content: str) -> int:
    return len(content.split())


def count_paragraphs(content: str) -> int:
    return len([block for block in content.split("\n\n") if block.strip()])


def analyze_seo(
    content: str,
    meta_title: str | None,
    meta_description: str | None,
    keyword: str | None,
) -> SeoAnalysis:
    issues: list[SeoIssue] = []
    content = content or ""
    word_count = count_words(content)

    h1 = len(_H1.findall(content))
    h2 = len(_H2.findall(content))
    h3 = len(_H3.findall(content))
    heading_count = h1 + h2 + h3
    if h1 == 0:
        issues.append(SeoIssue("warning", "No H1 heading found"))
    elif h1 > 1:
        issues.append(SeoIssue("warning", "Multiple H1 headings found"))
    if h2 == 0:
        issues.append(SeoIssue("suggestion", "Add H2 subheadings to structure the content"))

    internal_links = len(_INTERNAL_LINK.findall(content))
    external_links = len(_EXTERNAL_LINK.findall(content))
    if internal_links == 0:
        issues.append(SeoIssue("suggestion", "Add internal links to related content"))

    density = 0.0
    if keyword and word_count:
        matches = len(re.findall(re.escape(keyword.lower()), content.lower()))
        density = matches / word_count * 100
        if density < MIN_DENSITY:
            issues.append(SeoIssue("warning", f"Keyword density is low ({density:.2f}%)"))
        elif density > MAX_DENSITY:
            issues.append(SeoIssue("warning", f"Keyword density is high ({density:.2f}%)"))

    _check_length(meta_title, "Meta title", 30, 60, issues)
    _check_length(meta_description, "Meta description", 120, 160, issues)

    score = 100
    for issue in issues:
        if issue.type == "error":
            score -= 10
        elif issue.type == "warning":
            score -= 5
    if word_count < MIN_WORDS:
        score -= 10
    if heading_count < 2:
        score -= 5
    if internal_links == 0 and word_count > LONG_FORM_WORDS:
        score -= 5
    if keyword and word_count and (density < MIN_DENSITY or density > MAX_DENSITY):
        score -= 5

    return SeoAnalysis(
        score=max(0, min(100, score)),
        word_count=word_count,
        heading_count=heading_count,
        paragraph_count=count_paragraphs(content),
        internal_links=internal_links,
        external_links=external_links,
        keyword_density=round(density, 2),
        issues=issues,
    )


def _check_length(
    value: str | None, label: str, minimum: int, maximum: int, issues: list[SeoIssue]
) -> None:
    if not value:
        issues.append(SeoIssue("error", f"{label} is missing"))
    elif len(value) < minimum:
        issues.append(SeoIssue("suggestion", f"{label} is short ({len(value)} chars)"))
    elif len(value) > maximum:
        issues.append(SeoIssue("warning", f"{label} is long ({len(value)} chars)"))
