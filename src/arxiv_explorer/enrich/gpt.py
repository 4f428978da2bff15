"""
Abstract enrichment through the OpenAI chat completions API.
"""

import json
import re
from typing import Any

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from ..core.config import DEFAULT_MODEL, DEFAULT_TAG_FOCUS, Settings
from ..core.errors import EnrichmentError
from ..core.models import Enrichment
from ..utils.log import get_logger

log = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_enrichment_prompt(abstract: str, tag_focus: str = DEFAULT_TAG_FOCUS) -> dict[str, str]:
    """
    Build the system and user prompts for one abstract.

    Args:
        abstract: Paper abstract text
        tag_focus: Research area the tags should be specific to

    Returns:
        Dictionary with 'system' and 'user' prompt messages
    """
    system_prompt = f"""You are an AI specialized in scientific research summarization. You will be provided with the abstract of a research paper. Your task is to:
1. Generate a concise summary of the paper (1-2 sentences).
2. Clearly describe the novel contributions or findings the paper introduces.
3. Provide a list of relevant tags (5-10) that are specific and informative.

The tags should focus on the paper's key topics and areas, particularly in the context of {tag_focus}. Avoid general terms like 'AI' or 'machine learning' or any general tag that is obvious.

Your response must always be valid JSON with the following structure:
{{
  "summary": "Your concise summary here.",
  "novel_contributions": "Description of what new contributions the paper introduces.",
  "tags": ["specific_tag1", "specific_tag2", "specific_tag3", "..."]
}}

Ensure that all fields are filled accurately and that the response strictly adheres to the above structure."""

    return {
        "system": system_prompt,
        "user": abstract.strip(),
    }


def parse_enrichment(content: str | None) -> Enrichment:
    """
    Parse the model answer into an ``Enrichment``.

    Tolerates a surrounding Markdown code fence; anything else that is not the
    expected JSON object is rejected.

    Raises:
        EnrichmentError: If the content is empty, not JSON, or misses a field
    """
    if not content or not content.strip():
        raise EnrichmentError("Empty response from the model")

    text = _FENCE_RE.sub("", content.strip())
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise EnrichmentError(f"Response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise EnrichmentError(f"Expected a JSON object, got {type(payload).__name__}")

    try:
        enrichment = Enrichment.model_validate(payload)
    except ValidationError as e:
        raise EnrichmentError(f"Response does not match the enrichment schema: {e}") from e

    return enrichment.model_copy(
        update={
            "summary": enrichment.summary.strip(),
            "contribution": enrichment.contribution.strip(),
            "tags": [t.strip() for t in enrichment.tags if t.strip()],
        }
    )


def create_client(settings: Settings) -> AsyncOpenAI:
    """Create the OpenAI client; failed calls are dropped by the pipeline, never retried."""
    return AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)


class GPTEnricher:
    """Enrichment service: abstract in, ``Enrichment`` out."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model_name: str = DEFAULT_MODEL,
        tag_focus: str = DEFAULT_TAG_FOCUS,
        temperature: float = 0.7,
        max_tokens: int = 300,
    ) -> None:
        self.client = client
        self.model_name = model_name
        self.tag_focus = tag_focus
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "GPTEnricher":
        return cls(
            create_client(settings),
            model_name=settings.openai_model,
            tag_focus=settings.tag_focus,
        )

    async def enrich(self, abstract: str) -> Enrichment:
        """
        Summarise ``abstract`` and extract its contributions and tags.

        Raises:
            EnrichmentError: On API failure or a malformed answer
        """
        if not abstract.strip():
            raise EnrichmentError("Empty abstract")

        prompts = build_enrichment_prompt(abstract, self.tag_focus)
        create_kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": prompts["system"]},
                {"role": "user", "content": prompts["user"]},
            ],
            "max_completion_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        # Some models (e.g., gpt-5-nano) reject a custom temperature
        if not self.model_name.lower().startswith("gpt-5"):
            create_kwargs["temperature"] = self.temperature

        try:
            response = await self.client.chat.completions.create(**create_kwargs)
        except OpenAIError as e:
            log.debug("openai_call_failed", error=str(e), error_type=type(e).__name__)
            raise EnrichmentError(f"OpenAI call failed: {type(e).__name__}: {e}") from e

        if not response.choices:
            raise EnrichmentError("OpenAI response has no choices")

        content = response.choices[0].message.content
        log.debug("llm_response_received", content_length=len(content or ""))
        return parse_enrichment(content)

    async def close(self) -> None:
        await self.client.close()
