"""AI generated website summaries.

The scan orchestrator depends only on :class:`Summarizer`; the OpenAI backed
implementation builds its client lazily so importing this module needs no
credentials.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from openai import OpenAI

from .models import Failed, Ok

DEFAULT_MODEL = "gpt-4o"
SUMMARY_ERROR = "Failed to generate AI summary"

SYSTEM_PROMPT = (
    "You are an SEO and web analysis expert. Analyze the given website URL. "
    "Provide a JSON response with the following fields: 'summary' (brief description "
    "of what the website is), 'services' (list of services or products provided), "
    "'locations' (list of locations where services are provided, if applicable), "
    "'seoTitle' (a recommended SEO title for a report page about this site), "
    "'seoDescription' (a recommended meta description), 'seoKeywords' (list of keywords)."
)

LIST_FIELDS = ("services", "locations", "seoKeywords")
TEXT_FIELDS = ("summary", "seoTitle", "seoDescription")

logger = logging.getLogger("webtools.ai_summary")
logger.addHandler(logging.NullHandler())


class Summarizer(ABC):
    @abstractmethod
    def summarize(self, url: str) -> Union[Ok, Failed]:
        """Return ``Ok(summary dict)`` or ``Failed`` for ``url``."""
        ...


def _coerce_summary(parsed: Any) -> dict:
    if not isinstance(parsed, dict):
        raise ValueError("Model returned a non-object JSON payload")
    summary = dict(parsed)
    for key in TEXT_FIELDS:
        value = summary.get(key)
        summary[key] = value if isinstance(value, str) else ""
    for key in LIST_FIELDS:
        value = summary.get(key)
        if isinstance(value, str):
            value = [value]
        summary[key] = [str(item) for item in value] if isinstance(value, list) else []
    return summary


class OpenAISummarizer(Summarizer):
    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None) -> None:
        self._client = client
        self.model = model or os.getenv("WEBTOOLS_AI_MODEL", DEFAULT_MODEL)

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(
                api_key=os.getenv("AI_INTEGRATIONS_OPENAI_API_KEY"),
                base_url=os.getenv("AI_INTEGRATIONS_OPENAI_BASE_URL") or None,
            )
        return self._client

    def summarize(self, url: str) -> Union[Ok, Failed]:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Analyze this website: {url}"},
                ],
                response_format={"type": "json_object"},
            )
            content = completion.choices[0].message.content
            if not content:
                raise ValueError("No content from OpenAI")
            return Ok(_coerce_summary(json.loads(content)))
        except Exception as exc:
            logger.error("AI summary for %s failed: %s", url, exc)
            return Failed(SUMMARY_ERROR, details=str(exc))
