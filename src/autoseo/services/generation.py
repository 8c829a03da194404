from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import jsonschema

from ..config import GenerationConfig
from ..errors import PlatformRejected, ValidationFailed
from ..publishing.http import HttpClient, Transport, error_message, join_url
from ..utils import log_event

SYSTEM_PROMPT = (
    "You are an expert SEO content writer. Create high-quality, SEO-optimized articles "
    "that rank well in search engines while providing value to readers. Always return valid JSON."
)

ARTICLE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["title", "content"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "content": {"type": "string", "minLength": 1},
        "metaTitle": {"type": "string"},
        "metaDescription": {"type": "string"},
        "headings": {"type": "array", "items": {"type": "string"}},
    },
}


@dataclass(frozen=True)
class GenerationRequest:
    keyword: str
    project_name: str
    website_url: str | None = None
    language: str = "en"
    target_word_count: int = 2000
    existing_articles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GeneratedArticle:
    title: str
    content: str
    meta_title: str
    meta_description: str
    headings: list[str] = field(default_factory=list)


class ArticleGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> GeneratedArticle: ...


class LlmArticleGenerator:
    """Article writer backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        config: GenerationConfig,
        api_key: str | None = None,
        http: Transport | None = None,
    ) -> None:
        self.config = config
        self.api_key = api_key if api_key is not None else os.environ.get("AUTOSEO_LLM_API_KEY")
        self.http = http or HttpClient(timeout=config.timeout_seconds)
        self.logger = logging.getLogger("autoseo.generation")

    def generate(self, request: GenerationRequest) -> GeneratedArticle:
        if not self.api_key:
            raise ValidationFailed("AUTOSEO_LLM_API_KEY is not configured")
        messages = _render_messages(request)
        parsed = self._complete(messages)
        error = _validate_json(parsed)
        if error:
            log_event(self.logger, logging.WARNING, "generation_schema_invalid", error=error)
            repair = messages + [
                {"role": "user", "content": "Return valid JSON only. Fix schema violations."}
            ]
            parsed = self._complete(repair)
            error = _validate_json(parsed)
        if error:
            invalid = ValidationFailed(f"generator returned invalid article JSON: {error}")
            invalid.retryable = True
            raise invalid
        return _to_article(parsed, request.keyword)

    def _complete(self, messages: list[dict[str, str]]) -> Any:
        body = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "response_format": {"type": "json_object"},
        }
        response = self.http.request(
            "POST",
            join_url(self.config.base_url, "/chat/completions"),
            headers={"Authorization": f"Bearer {self.api_key}"},
            json_body=body,
            timeout=self.config.timeout_seconds,
        )
        if not response.ok:
            raise PlatformRejected(
                f"generation failed: {error_message(response)}",
                status=response.status,
                body=response.body[:500],
            )
        payload = response.json() or {}
        choices = payload.get("choices") or []
        if not choices:
            missing = ValidationFailed("generation response has no choices")
            missing.retryable = True
            raise missing
        raw = choices[0].get("message", {}).get("content") or ""
        log_event(
            self.logger,
            logging.INFO,
            "generation_completed",
            model=payload.get("model") or self.config.model,
            usage=payload.get("usage"),
        )
        return _maybe_parse_json(raw)


def _render_messages(request: GenerationRequest) -> list[dict[str, str]]:
    site = f" ({request.website_url})" if request.website_url else ""
    lines = [
        f'Write a comprehensive, SEO-optimized article about "{request.keyword}" '
        f"for {request.project_name}{site}.",
        "",
        "Requirements:",
        f"- Target word count: {request.target_word_count} words",
        f"- Language: {request.language}",
        "- Include H1, H2, and H3 headings",
        "- Write in a professional, engaging tone",
        "- Include relevant examples and practical advice",
        "- Optimize for search engines while maintaining readability",
        "- Include internal linking opportunities",
    ]
    if request.existing_articles:
        lines.append("")
        lines.append(
            "Consider linking to these existing articles: " + ", ".join(request.existing_articles)
        )
    lines.extend(
        [
            "",
            "Format the response as JSON with this structure:",
            '{"title": "...", "content": "markdown", "metaTitle": "50-60 characters", '
            '"metaDescription": "150-160 characters", "headings": ["..."]}',
        ]
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(lines)},
    ]


def _to_article(parsed: dict[str, Any], keyword: str) -> GeneratedArticle:
    title = parsed.get("title") or keyword
    return GeneratedArticle(
        title=title,
        content=parsed.get("content") or "",
        meta_title=parsed.get("metaTitle") or title,
        meta_description=parsed.get("metaDescription") or f"Learn about {keyword} and more.",
        headings=list(parsed.get("headings") or []),
    )


def _maybe_parse_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _validate_json(payload: Any) -> str | None:
    try:
        jsonschema.validate(payload, ARTICLE_SCHEMA)
        return None
    except jsonschema.ValidationError as exc:
        return exc.message
