"""
Generative-model augmentation for analytics records.

An augmenter only adds prose (a narrative, notable patterns, data
limitations). It never changes a numeric metric. NoopAugmenter is the
default; OpenAIAugmenter is used when an API key is configured.
"""

import json
import re
from typing import TYPE_CHECKING, Protocol

from loguru import logger
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from judgeindex.services.errors import AugmentationError
from judgeindex.settings import Settings

if TYPE_CHECKING:
    from judgeindex.analysis.types import AnalyticsRecord, CaseRecord

MAX_EXCERPT_CASES = 40
MAX_SUMMARY_CHARS = 300


class Augmentation(BaseModel):
    narrative: str | None = None
    notable_patterns: list[str] = Field(default_factory=list)
    data_limitations: list[str] = Field(default_factory=list)


class Augmenter(Protocol):
    model_name: str

    def is_enabled(self) -> bool: ...

    async def augment(self, record: "AnalyticsRecord", cases: list["CaseRecord"]) -> Augmentation: ...


class NoopAugmenter:
    """Augmentation disabled."""

    model_name = "none"

    def is_enabled(self) -> bool:
        return False

    async def augment(self, record: "AnalyticsRecord", cases: list["CaseRecord"]) -> Augmentation:
        return Augmentation()


class OpenAIAugmenter:
    """
    Chat-completion augmenter.

    Usage:
        augmenter = OpenAIAugmenter(api_key=settings.openai_api_key)
        extra = await augmenter.augment(record, cases)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        client: AsyncOpenAI | None = None,
    ):
        self.model_name = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    def is_enabled(self) -> bool:
        return bool(self._api_key)

    async def augment(self, record: "AnalyticsRecord", cases: list["CaseRecord"]) -> Augmentation:
        prompt = self._build_prompt(record, cases)
        try:
            response = await self._client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You are a legal analytics assistant. You describe statistical "
                            "findings about a judge's rulings in neutral language. "
                            "Output must be valid JSON."
                        ),
                    },
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise AugmentationError(f"Augmentation request failed: {e}", "openai") from e

        content = response.choices[0].message.content or ""
        return self._parse(content)

    def _build_prompt(self, record: "AnalyticsRecord", cases: list["CaseRecord"]) -> str:
        metrics = {
            name: {
                "value": m.value,
                "confidence": m.confidence,
                "sample_size": m.sample_size,
                "suppressed": m.suppressed,
            }
            for name, m in record.metrics.items()
        }
        excerpt = [
            {
                "case_type": c.case_type,
                "outcome": c.outcome,
                "summary": (c.summary or "")[:MAX_SUMMARY_CHARS],
                "filing_date": c.filing_date.isoformat() if c.filing_date else None,
            }
            for c in cases[:MAX_EXCERPT_CASES]
        ]
        return f"""Review the statistical analytics below for one judge and a sample of their cases.

Statistics ({record.total_cases_analyzed} cases, overall confidence {record.overall_confidence}):
{json.dumps(metrics, indent=2)}

Case sample:
{json.dumps(excerpt, indent=2)}

Do not restate or change any number. Suppressed metrics have too few cases to interpret.
Respond with a JSON object:
{{
  "narrative": "2-4 sentence neutral summary",
  "notable_patterns": ["pattern supported by the statistics"],
  "data_limitations": ["caveat about the data"]
}}"""

    @staticmethod
    def _parse(content: str) -> Augmentation:
        text = content.strip()
        code_blocks = re.findall(r"```(?:json)?\s*([^`]*?)```", text)
        if code_blocks:
            text = code_blocks[-1]
        try:
            return Augmentation.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise AugmentationError(f"Unparseable augmentation response: {e}", "openai") from e


def build_augmenter(settings: Settings) -> Augmenter:
    if not settings.openai_api_key:
        logger.info("OPENAI_API_KEY not set, analytics augmentation disabled")
        return NoopAugmenter()
    return OpenAIAugmenter(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
