"""Tests for the similarity oracle helpers and fallback behaviour."""

import asyncio
import random

import pytest

from config import Settings
from modules.errors import OracleError
from modules.similarity import (
    ANALYSIS_UNAVAILABLE,
    GeminiSimilarityOracle,
    ReplicateSimilarityOracle,
    build_oracle,
    build_similarity_prompt,
    clamp_score,
    describe_image,
    extract_json,
    fallback_analysis,
    heuristic_similarity,
    parse_similarity_response,
    score_similarity,
)

from conftest import ScriptedOracle


class TestParseResponse:

    def test_plain_json(self):
        analysis = parse_similarity_response(
            '{"similarityScore": 0.82, "reasoning": "Both are headphones", "visualFeatures": ["black", "over-ear"]}'
        )
        assert analysis.similarity_score == pytest.approx(0.82)
        assert analysis.reasoning == "Both are headphones"
        assert analysis.visual_features == ["black", "over-ear"]
        assert analysis.is_fallback is False

    def test_json_in_code_fence(self):
        text = 'Here you go:\n```json\n{"similarityScore": 0.4, "reasoning": "meh", "visualFeatures": []}\n```'
        assert parse_similarity_response(text).similarity_score == pytest.approx(0.4)

    def test_json_embedded_in_prose(self):
        text = 'The images look alike. {"similarityScore": 0.7, "reasoning": "alike"} Hope that helps.'
        assert parse_similarity_response(text).similarity_score == pytest.approx(0.7)

    def test_score_clamped(self):
        assert parse_similarity_response('{"similarityScore": 3.5}').similarity_score == 1.0
        assert parse_similarity_response('{"similarityScore": -2}').similarity_score == 0.0

    def test_missing_fields_defaulted(self):
        analysis = parse_similarity_response("{}")
        assert analysis.similarity_score == 0.0
        assert analysis.reasoning == "Unable to analyze similarity"
        assert analysis.visual_features == []

    def test_no_json_raises(self):
        with pytest.raises(OracleError):
            parse_similarity_response("I cannot compare these images.")

    def test_extract_json_rejects_invalid(self):
        assert extract_json("{not json}") is None

    def test_clamp_score_non_numeric(self):
        assert clamp_score("high") == 0.0
        assert clamp_score(None) == 0.0
        assert clamp_score(float("nan")) == 0.0


class TestHeuristic:

    def test_strong_match_text(self):
        analysis = heuristic_similarity("These look like the same headphones with similar color", "Electronics > Audio")
        # base 0.1 + similar 0.3 + same 0.4 + color 0.2
        assert analysis.similarity_score == pytest.approx(1.0)
        assert "Strong visual match" in analysis.visual_features

    def test_category_word_bonus(self):
        analysis = heuristic_similarity("An audio device on a desk", "Electronics > Audio")
        assert analysis.similarity_score == pytest.approx(0.2)
        assert analysis.visual_features == ["Category match"]

    def test_unrelated_text(self):
        analysis = heuristic_similarity("A cat sleeping on a sofa", "Tools & Hardware > Power Tools")
        assert analysis.similarity_score == pytest.approx(0.1)
        assert analysis.visual_features == ["Basic visual analysis"]
        assert analysis.reasoning.startswith("Analysis based on AI description: A cat")


class TestFallback:

    def test_fallback_range_and_flag(self):
        rng = random.Random(11)
        for _ in range(200):
            analysis = fallback_analysis(rng, 0.3, 0.8)
            assert 0.3 <= analysis.similarity_score <= 0.8
            assert analysis.is_fallback is True
            assert analysis.visual_features == ["fallback analysis"]

    def test_score_similarity_recovers_from_failure(self):
        oracle = ScriptedOracle({}, failures={"Speaker"})
        analysis = asyncio.run(score_similarity(
            oracle, "https://q.example.com/a.jpg", "https://p.example.com/b.jpg",
            "Speaker", "Electronics > Audio", rng=random.Random(1)
        ))
        assert analysis.is_fallback is True
        assert 0.3 <= analysis.similarity_score <= 0.8

    def test_score_similarity_passes_through_success(self):
        oracle = ScriptedOracle({"Speaker": 0.66})
        analysis = asyncio.run(score_similarity(
            oracle, "https://q.example.com/a.jpg", "https://p.example.com/b.jpg",
            "Speaker", "Electronics > Audio"
        ))
        assert analysis.similarity_score == pytest.approx(0.66)
        assert analysis.is_fallback is False

    def test_describe_image_failure_message(self):
        oracle = ScriptedOracle({})
        assert asyncio.run(describe_image(oracle, "https://q.example.com/fail.jpg")) == ANALYSIS_UNAVAILABLE


class TestProviders:

    def test_prompt_mentions_product(self):
        prompt = build_similarity_prompt("Sony WH-1000XM5", "Electronics > Audio")
        assert "Sony WH-1000XM5 - Electronics > Audio" in prompt
        assert '"similarityScore"' in prompt

    def test_gemini_without_key_raises_oracle_error(self):
        oracle = GeminiSimilarityOracle(api_key=None, request_delay=0)
        with pytest.raises(OracleError):
            asyncio.run(oracle.analyze_similarity(
                "data:image/png;base64,aGVsbG8=", "data:image/png;base64,aGVsbG8=", "Speaker", "Electronics > Audio"
            ))

    def test_gemini_without_key_falls_back(self):
        oracle = GeminiSimilarityOracle(api_key=None, request_delay=0)
        analysis = asyncio.run(score_similarity(
            oracle, "data:image/png;base64,aGVsbG8=", "data:image/png;base64,aGVsbG8=",
            "Speaker", "Electronics > Audio", rng=random.Random(2)
        ))
        assert analysis.is_fallback is True

    def test_replicate_without_token_raises_oracle_error(self):
        oracle = ReplicateSimilarityOracle(api_token=None, model="owner/model:version")
        with pytest.raises(OracleError):
            asyncio.run(oracle.describe_image("https://q.example.com/a.jpg"))

    def test_build_oracle_by_provider(self):
        gemini = build_oracle(Settings(_env_file=None, SIMILARITY_PROVIDER="gemini"))
        replicate_oracle = build_oracle(Settings(_env_file=None, SIMILARITY_PROVIDER="Replicate"))
        assert isinstance(gemini, GeminiSimilarityOracle)
        assert isinstance(replicate_oracle, ReplicateSimilarityOracle)

    def test_build_oracle_unknown_provider(self):
        with pytest.raises(ValueError):
            build_oracle(Settings(_env_file=None, SIMILARITY_PROVIDER="clip"))


QUERY_URL = "data:image/png;base64,aGVsbG8="
PRODUCT_URL = "data:image/jpeg;base64,d29ybGQ="


class FakeGeminiResponse:
    def __init__(self, text):
        self.text = text


class FakeGeminiModel:
    def __init__(self, text):
        self.answer = text
        self.requests = []

    async def generate_content_async(self, parts, generation_config=None):
        self.requests.append((parts, generation_config))
        return FakeGeminiResponse(self.answer)


class FakeReplicateClient:
    def __init__(self, output):
        self.output = output
        self.runs = []

    def run(self, model, input):
        self.runs.append((model, input))
        return self.output


class TestGeminiOracle:

    def make_oracle(self, answer):
        oracle = GeminiSimilarityOracle(api_key="test-key", request_delay=0)
        oracle._model = FakeGeminiModel(answer)
        return oracle

    def test_parses_json_answer(self):
        oracle = self.make_oracle(
            '{"similarityScore": 0.87, "reasoning": "Same headphones", "visualFeatures": ["black"]}'
        )
        analysis = asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))

        assert analysis.similarity_score == pytest.approx(0.87)
        assert analysis.visual_features == ["black"]
        assert analysis.is_fallback is False

    def test_sends_prompt_and_both_images(self):
        oracle = self.make_oracle('{"similarityScore": 0.5}')
        asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))

        parts, generation_config = oracle._model.requests[0]
        assert "Speaker - Electronics > Audio" in parts[0]
        assert parts[1] == {"mime_type": "image/png", "data": b"hello"}
        assert parts[2] == {"mime_type": "image/jpeg", "data": b"world"}
        assert generation_config.response_mime_type == "application/json"

    def test_describe_image_returns_text(self):
        oracle = self.make_oracle("A red leather handbag")
        assert asyncio.run(oracle.describe_image(QUERY_URL)) == "A red leather handbag"

    def test_unparseable_answer_falls_back(self):
        oracle = self.make_oracle("Sorry, I cannot help with that.")
        analysis = asyncio.run(score_similarity(
            oracle, QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio", rng=random.Random(4)
        ))
        assert analysis.is_fallback is True


class TestReplicateOracle:

    def make_oracle(self, output):
        oracle = ReplicateSimilarityOracle(api_token="test-token", model="owner/llava:abc")
        oracle._client = FakeReplicateClient(output)
        return oracle

    def test_json_answer(self):
        oracle = self.make_oracle('{"similarityScore": 0.66, "reasoning": "alike", "visualFeatures": ["round"]}')
        analysis = asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))

        assert analysis.similarity_score == pytest.approx(0.66)
        assert analysis.reasoning == "alike"
        model, run_input = oracle._client.runs[0]
        assert model == "owner/llava:abc"
        assert run_input["image"] == QUERY_URL
        assert "Compare this image with a Speaker (Electronics > Audio)" in run_input["prompt"]

    def test_streamed_chunks_are_joined(self):
        oracle = self.make_oracle(iter(['{"similarityScore": ', '0.72, "reasoning": ', '"close"}']))
        analysis = asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))
        assert analysis.similarity_score == pytest.approx(0.72)
        assert analysis.reasoning == "close"

    def test_free_text_uses_keyword_heuristic(self):
        oracle = self.make_oracle(iter(["These look like ", "similar audio gear"]))
        analysis = asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))
        # base 0.1 + similar 0.3 + category word 0.1
        assert analysis.similarity_score == pytest.approx(0.5)
        assert analysis.reasoning.startswith("Analysis based on AI description")

    def test_dict_output_is_serialized(self):
        oracle = self.make_oracle({"similarityScore": 0.4, "reasoning": "some overlap"})
        analysis = asyncio.run(oracle.analyze_similarity(QUERY_URL, PRODUCT_URL, "Speaker", "Electronics > Audio"))
        assert analysis.similarity_score == pytest.approx(0.4)

    def test_describe_image_joins_chunks(self):
        oracle = self.make_oracle(iter(["A pair of ", "running shoes"]))
        assert asyncio.run(oracle.describe_image(QUERY_URL)) == "A pair of running shoes"
