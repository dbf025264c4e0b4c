from unittest.mock import AsyncMock, MagicMock

import pytest

from app.features.scan.services.plagiarism.plagiarism_service import PlagiarismChecker
from app.platform.exceptions import ProviderError
from app.platform.services.llm import PerplexityClient, clamp_pct, extract_json_object_loose, stable_hash_lite


@pytest.fixture
def llm():
    client = MagicMock()
    client.configured = True
    client.chat = AsyncMock(return_value=(
        "<think>comparing</think> Here you go: "
        '{"plagiarismPercent": 41.6, "sources": [{"url": "https://copied.org/a", "note": "intro"}, {"note": "no url"}], '
        '"notes": " Mostly original. "}'
    ))
    return client


class TestPlagiarismChecker:

    async def test_parses_model_output(self, llm):
        result = await PlagiarismChecker(llm).check("My draft text", url="https://example.com/post")

        assert result.plagiarism == 42
        assert result.sources == [{"url": "https://copied.org/a", "note": "intro"}]
        assert result.notes == "Mostly original."
        assert result.cache_key.startswith("plag:example.com:")
        assert result.checked_at

    async def test_results_are_cached(self, llm):
        checker = PlagiarismChecker(llm)

        first = await checker.check("Same draft", url="https://example.com/post")
        second = await checker.check("Same draft", url="https://example.com/post")

        assert first is second
        assert llm.chat.await_count == 1

    async def test_explicit_cache_key(self, llm):
        result = await PlagiarismChecker(llm).check("Draft", cache_key="custom-key")
        assert result.cache_key == "custom-key"

    async def test_empty_draft_skips_model(self, llm):
        result = await PlagiarismChecker(llm).check("   ")

        assert result.plagiarism == 0
        llm.chat.assert_not_awaited()

    async def test_draft_is_truncated(self, llm):
        await PlagiarismChecker(llm, max_chars=10).check("x" * 50)

        prompt = llm.chat.await_args.kwargs["messages"][1]["content"]
        assert "x" * 10 in prompt
        assert "x" * 11 not in prompt

    async def test_unconfigured_client_raises(self):
        checker = PlagiarismChecker(PerplexityClient(api_key=""))

        assert checker.configured is False
        with pytest.raises(ProviderError, match="PERPLEXITY_API_KEY is not set"):
            await checker.check("draft")

    def test_cache_key_is_stable(self):
        a = PlagiarismChecker.derive_cache_key("https://www.example.com/a", "", "draft", "")
        b = PlagiarismChecker.derive_cache_key("https://www.example.com/a", "", "draft", "")
        assert a == b
        assert a.startswith("plag:example.com:")


class TestLlmHelpers:

    @pytest.mark.parametrize("text,expected", [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 2}\n```', {"a": 2}),
        ('<think>{"no": 1}</think> result {"a": 3} done', {"a": 3}),
        ("no json here", None),
        ("", None),
    ])
    def test_extract_json_object_loose(self, text, expected):
        assert extract_json_object_loose(text) == expected

    @pytest.mark.parametrize("value,expected", [
        (41.6, 42), (-5, 0), (150, 100), ("37", 37), ("abc", 0), (None, 0), (float("nan"), 0),
    ])
    def test_clamp_pct(self, value, expected):
        assert clamp_pct(value) == expected

    def test_stable_hash_lite(self):
        assert stable_hash_lite("") == "811c9dc5"
        assert stable_hash_lite("abc") == stable_hash_lite("abc")
        assert stable_hash_lite("abc") != stable_hash_lite("abd")
