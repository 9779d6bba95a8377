"""Tests for OpenAI-backed analytics augmentation."""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from judgeindex.ai.augmenter import NoopAugmenter, OpenAIAugmenter, build_augmenter
from judgeindex.analysis.types import AnalysisQuality, AnalyticsRecord, CaseRecord, MetricResult
from judgeindex.services.errors import AugmentationError
from judgeindex.settings import Settings

RECORD = AnalyticsRecord(
    judge_id="1001",
    metrics={
        "civil_plaintiff_favor": MetricResult(
            value=62.5, confidence=88.0, sample_size=640, suppressed=False
        )
    },
    overall_confidence=88.0,
    total_cases_analyzed=640,
    analysis_quality=AnalysisQuality.HIGH,
    generated_at=datetime(2026, 1, 5, 8, 0, 0),
)
CASES = [CaseRecord(case_type="Civil", outcome="Judgment for plaintiff", summary="x" * 1000)]


def completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def make_augmenter(create: AsyncMock) -> OpenAIAugmenter:
    client = MagicMock()
    client.chat.completions.create = create
    return OpenAIAugmenter(api_key="sk-test", client=client)


class TestOpenAIAugmenter:
    async def test_returns_parsed_prose(self):
        create = AsyncMock(
            return_value=completion(
                '{"narrative": "Rules for plaintiffs somewhat often.", '
                '"notable_patterns": ["civil"], "data_limitations": []}'
            )
        )

        result = await make_augmenter(create).augment(RECORD, CASES)

        assert result.narrative == "Rules for plaintiffs somewhat often."
        assert result.notable_patterns == ["civil"]
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        prompt = kwargs["messages"][1]["content"]
        assert "640 cases" in prompt
        assert "x" * 301 not in prompt

    async def test_api_failure_is_an_augmentation_error(self):
        create = AsyncMock(side_effect=OpenAIError("connection reset"))

        with pytest.raises(AugmentationError) as exc_info:
            await make_augmenter(create).augment(RECORD, CASES)
        assert exc_info.value.service_id == "openai"

    async def test_empty_reply_is_an_augmentation_error(self):
        with pytest.raises(AugmentationError):
            await make_augmenter(AsyncMock(return_value=completion(None))).augment(RECORD, CASES)

    def test_is_enabled_requires_key(self):
        assert not OpenAIAugmenter(api_key="", client=MagicMock()).is_enabled()


class TestParse:
    def test_fenced_json(self):
        content = 'Here you go:\n```json\n{"narrative": "Steady.", "data_limitations": ["few appeals"]}\n```'

        result = OpenAIAugmenter._parse(content)

        assert result.narrative == "Steady."
        assert result.data_limitations == ["few appeals"]
        assert result.notable_patterns == []

    def test_invalid_json(self):
        with pytest.raises(AugmentationError):
            OpenAIAugmenter._parse("The judge is fair.")

    def test_wrong_shape(self):
        with pytest.raises(AugmentationError):
            OpenAIAugmenter._parse('{"notable_patterns": "not a list"}')


class TestBuildAugmenter:
    def test_without_key_is_disabled(self):
        augmenter = build_augmenter(Settings())

        assert isinstance(augmenter, NoopAugmenter)
        assert not augmenter.is_enabled()

    def test_with_key_uses_configured_model(self):
        augmenter = build_augmenter(Settings(openai_api_key="sk-test", openai_model="gpt-4o"))

        assert isinstance(augmenter, OpenAIAugmenter)
        assert augmenter.model_name == "gpt-4o"
        assert augmenter.is_enabled()
