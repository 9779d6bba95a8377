"""Tests for process-wide component wiring."""

from judgeindex.ai.augmenter import NoopAugmenter, OpenAIAugmenter
from judgeindex.bootstrap import build_components
from judgeindex.services.rate_limiter import MemoryRateLimitBackend, SqlRateLimitBackend
from judgeindex.settings import Settings


class TestBuildComponents:
    async def test_shares_one_provider_client(self, session_factory):
        settings = Settings(sync_workers=2, circuit_failure_threshold=7)

        components = build_components(settings, session_factory)
        try:
            client = components.source.client
            assert components.orchestrator.source is components.source
            assert components.analytics.case_refresher.source is components.source
            assert components.analytics.cache is components.cache
            assert components.analytics.engine is components.engine
            assert components.analytics.progress_store is components.progress_store
            assert components.orchestrator.workers == 2
            assert client.circuit_breaker.config.failure_threshold == 7
            assert isinstance(client.rate_limiter._backend, SqlRateLimitBackend)
            assert isinstance(components.engine.augmenter, NoopAugmenter)
        finally:
            await components.close()

    async def test_memory_backend_and_augmenter(self, session_factory):
        settings = Settings(rate_limit_backend="memory", openai_api_key="sk-test")

        components = build_components(settings, session_factory)
        try:
            assert isinstance(components.source.client.rate_limiter._backend, MemoryRateLimitBackend)
            assert isinstance(components.engine.augmenter, OpenAIAugmenter)
        finally:
            await components.close()

    async def test_sync_options_follow_settings(self, session_factory):
        settings = Settings(sync_jurisdiction="F", sync_max_entities=25)

        options = build_components(settings, session_factory).sync_options()

        assert options.jurisdiction == "F"
        assert options.max_entities == 25
