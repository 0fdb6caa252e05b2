"""
AI image similarity via an external multimodal model.

Two providers are supported:
- Gemini (google-generativeai): both images are sent inline and the model is
  asked for a JSON answer.
- Replicate (LLaVA): only the query image is sent, the candidate is described
  by name and category; JSON is pulled out of free text, with a keyword
  heuristic when the model does not return any.

Providers raise OracleError on any failure. score_similarity() is the
entry point used by the batch pipeline: it never raises and substitutes a
pseudo-random fallback score, flagged with is_fallback=True.
"""
import asyncio
import json
import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models.schemas import SimilarityAnalysis
from modules.errors import OracleError
from modules.image_data import load_image, to_data_url

logger = logging.getLogger(__name__)

try:
    import google.generativeai as genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False
    logger.warning("Google Generative AI (Gemini) not available. Install with: pip install google-generativeai")

try:
    import replicate
    REPLICATE_AVAILABLE = True
except ImportError:
    REPLICATE_AVAILABLE = False
    logger.warning("Replicate client not available. Install with: pip install replicate")


SIMILARITY_PROMPT_TEMPLATE = """Compare these two images for visual similarity.

Image 1: User uploaded image
Image 2: Product image ({product_name} - {product_category})

Analyze:
1. Overall visual similarity (shape, color, style, type of object)
2. Specific visual features that match or differ
3. Whether they represent similar types of products

Respond with JSON in this exact format:
{{
  "similarityScore": 0.85,
  "reasoning": "Brief explanation of why they are or aren't similar",
  "visualFeatures": ["color match", "similar shape", "same product type"]
}}

Score from 0.0 to 1.0 where:
- 0.9-1.0: Nearly identical or same product type with very similar features
- 0.7-0.9: Similar product type with matching visual characteristics
- 0.5-0.7: Some visual similarities but different product types
- 0.3-0.5: Few visual similarities
- 0.0-0.3: Very different or unrelated objects"""

DESCRIBE_PROMPT = (
    "Analyze this image and describe what product or object it shows. "
    "Be specific about the type, color, style, and key visual features. "
    "Keep it concise but detailed."
)

FALLBACK_REASONING = "AI analysis unavailable, using fallback similarity"
ANALYSIS_UNAVAILABLE = "Image analysis unavailable"


def build_similarity_prompt(product_name: str, product_category: str) -> str:
    return SIMILARITY_PROMPT_TEMPLATE.format(product_name=product_name, product_category=product_category)


def clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return max(0.0, min(1.0, score))


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of a model answer (code fences allowed)."""
    text = text.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if not json_match:
        return None
    try:
        parsed = json.loads(json_match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def analysis_from_json(result: Dict[str, Any]) -> SimilarityAnalysis:
    features = result.get("visualFeatures") or []
    if not isinstance(features, list):
        features = [str(features)]
    return SimilarityAnalysis(
        similarity_score=clamp_score(result.get("similarityScore") or 0),
        reasoning=result.get("reasoning") or "Unable to analyze similarity",
        visual_features=[str(f) for f in features]
    )


def parse_similarity_response(text: str) -> SimilarityAnalysis:
    """Parse a JSON similarity answer. Raises OracleError if none is found."""
    result = extract_json(text or "")
    if result is None:
        raise OracleError("No JSON found in model response")
    return analysis_from_json(result)


def heuristic_similarity(response_text: str, product_category: str) -> SimilarityAnalysis:
    """
    Keyword-based score for free-text answers that carry no JSON.
    """
    response = response_text.lower()
    score = 0.1
    features: List[str] = []

    if "similar" in response or "match" in response:
        score += 0.3
        features.append("AI detected similarities")
    if "same" in response or "identical" in response:
        score += 0.4
        features.append("Strong visual match")
    if "color" in response and "similar" in response:
        score += 0.2
        features.append("Color similarity")
    if "shape" in response and "similar" in response:
        score += 0.2
        features.append("Shape similarity")

    category_words = [w for w in re.split(r"[^\w&]+", product_category.lower()) if len(w) > 1]
    if any(word in response for word in category_words):
        score += 0.1
        features.append("Category match")

    return SimilarityAnalysis(
        similarity_score=min(score, 1.0),
        reasoning=f"Analysis based on AI description: {response_text[:150]}...",
        visual_features=features or ["Basic visual analysis"]
    )


def fallback_analysis(
    rng: Optional[random.Random] = None,
    min_score: float = 0.3,
    max_score: float = 0.8
) -> SimilarityAnalysis:
    """Pseudo-random score used when the oracle fails."""
    rng = rng or random
    return SimilarityAnalysis(
        similarity_score=rng.uniform(min_score, max_score),
        reasoning=FALLBACK_REASONING,
        visual_features=["fallback analysis"],
        is_fallback=True
    )


class SimilarityOracle(ABC):
    """External capability: score how similar two images are."""

    name = "oracle"

    @abstractmethod
    async def analyze_similarity(
        self,
        query_image_url: str,
        product_image_url: str,
        product_name: str,
        product_category: str
    ) -> SimilarityAnalysis:
        """Return the model's analysis. Raise OracleError on failure."""

    @abstractmethod
    async def describe_image(self, image_url: str) -> str:
        """Free-text description of an image. Raise OracleError on failure."""


class GeminiSimilarityOracle(SimilarityOracle):
    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-2.5-flash",
        request_delay: float = 0.1,
        fetch_timeout: float = 15.0
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.request_delay = request_delay
        self.fetch_timeout = fetch_timeout
        self._model = None

    def _get_model(self):
        if not GEMINI_AVAILABLE:
            raise OracleError("Gemini not available")
        if not self.api_key:
            raise OracleError("GEMINI_API_KEY not configured")
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def _generate(self, parts: list, json_response: bool) -> str:
        model = self._get_model()
        config_kwargs = {"temperature": 0.1}
        if json_response:
            config_kwargs["response_mime_type"] = "application/json"
        try:
            response = await model.generate_content_async(
                parts,
                generation_config=genai.types.GenerationConfig(**config_kwargs)
            )
            # .text raises ValueError when the candidate was blocked or empty
            return response.text
        except Exception as e:
            raise OracleError(f"Gemini request failed: {e}") from e

    async def _load_part(self, url: str) -> Dict[str, Any]:
        try:
            mime_type, data = await load_image(url, timeout=self.fetch_timeout)
        except Exception as e:
            raise OracleError(f"Could not load image: {e}") from e
        return {"mime_type": mime_type, "data": data}

    async def analyze_similarity(
        self,
        query_image_url: str,
        product_image_url: str,
        product_name: str,
        product_category: str
    ) -> SimilarityAnalysis:
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

        query_part = await self._load_part(query_image_url)
        product_part = await self._load_part(product_image_url)
        prompt = build_similarity_prompt(product_name, product_category)

        text = await self._generate([prompt, query_part, product_part], json_response=True)
        return parse_similarity_response(text)

    async def describe_image(self, image_url: str) -> str:
        image_part = await self._load_part(image_url)
        text = await self._generate([DESCRIBE_PROMPT, image_part], json_response=False)
        return text or "Unable to analyze image content"


class ReplicateSimilarityOracle(SimilarityOracle):
    name = "replicate"

    def __init__(
        self,
        api_token: Optional[str],
        model: str,
        fetch_timeout: float = 15.0
    ):
        self.api_token = api_token
        self.model = model
        self.fetch_timeout = fetch_timeout
        self._client = None

    def _get_client(self):
        if not REPLICATE_AVAILABLE:
            raise OracleError("Replicate client not available")
        if not self.api_token:
            raise OracleError("REPLICATE_API_TOKEN not configured")
        if self._client is None:
            self._client = replicate.Client(api_token=self.api_token)
        return self._client

    async def _image_input(self, url: str) -> str:
        # Replicate fetches http(s) URLs itself; data URLs are passed through.
        if url.startswith(("data:", "http://", "https://")):
            return url
        try:
            mime_type, data = await load_image(url, timeout=self.fetch_timeout)
        except Exception as e:
            raise OracleError(f"Could not load image: {e}") from e
        return to_data_url(data, mime_type)

    async def _run(self, image: str, prompt: str, max_tokens: int) -> str:
        client = self._get_client()
        try:
            output = await asyncio.to_thread(
                client.run,
                self.model,
                input={"image": image, "prompt": prompt, "max_tokens": max_tokens}
            )
        except Exception as e:
            raise OracleError(f"Replicate request failed: {e}") from e

        if isinstance(output, str):
            return output
        # LLaVA streams its answer as an iterator of text chunks
        if not isinstance(output, dict) and hasattr(output, "__iter__"):
            return "".join(str(chunk) for chunk in output)
        return json.dumps(output)

    async def analyze_similarity(
        self,
        query_image_url: str,
        product_image_url: str,
        product_name: str,
        product_category: str
    ) -> SimilarityAnalysis:
        image = await self._image_input(query_image_url)
        prompt = (
            f"{build_similarity_prompt(product_name, product_category)}\n\n"
            f"Additional context: Compare this image with a {product_name} ({product_category}). "
            f"Focus on visual similarity."
        )
        text = await self._run(image, prompt, max_tokens=500)

        result = extract_json(text)
        if result is None:
            logger.debug(f"[ORACLE] No JSON in Replicate answer for {product_name}, using keyword heuristic")
            return heuristic_similarity(text, product_category)
        return analysis_from_json(result)

    async def describe_image(self, image_url: str) -> str:
        image = await self._image_input(image_url)
        text = await self._run(image, DESCRIBE_PROMPT, max_tokens=200)
        return text or "Unable to analyze image content"


async def score_similarity(
    oracle: SimilarityOracle,
    query_image_url: str,
    product_image_url: str,
    product_name: str,
    product_category: str,
    rng: Optional[random.Random] = None,
    fallback_min: float = 0.3,
    fallback_max: float = 0.8
) -> SimilarityAnalysis:
    """
    Ask the oracle for a similarity score, falling back to a pseudo-random
    score in [fallback_min, fallback_max] on any failure.
    """
    try:
        analysis = await oracle.analyze_similarity(
            query_image_url,
            product_image_url,
            product_name,
            product_category
        )
        logger.info(f"[ORACLE] {product_name}: {analysis.similarity_score:.2f} - {analysis.reasoning[:120]}")
        return analysis
    except Exception as e:
        logger.warning(f"[ORACLE] Similarity analysis failed for {product_name}, using fallback score: {e}")
        return fallback_analysis(rng, fallback_min, fallback_max)


async def describe_image(oracle: SimilarityOracle, image_url: str) -> str:
    """Image description with the same never-raise contract as score_similarity."""
    try:
        return await oracle.describe_image(image_url)
    except Exception as e:
        logger.error(f"[ORACLE] Error analyzing image content: {e}")
        return ANALYSIS_UNAVAILABLE


def build_oracle(settings) -> SimilarityOracle:
    """Create the oracle selected by settings.SIMILARITY_PROVIDER."""
    provider = (settings.SIMILARITY_PROVIDER or "gemini").lower()
    if provider == "gemini":
        return GeminiSimilarityOracle(
            api_key=settings.GEMINI_API_KEY,
            model_name=settings.LLM_MODEL,
            request_delay=settings.ORACLE_REQUEST_DELAY_MS / 1000.0,
            fetch_timeout=settings.IMAGE_FETCH_TIMEOUT
        )
    if provider == "replicate":
        return ReplicateSimilarityOracle(
            api_token=settings.REPLICATE_API_TOKEN,
            model=settings.REPLICATE_MODEL,
            fetch_timeout=settings.IMAGE_FETCH_TIMEOUT
        )
    raise ValueError(f"Unknown SIMILARITY_PROVIDER '{settings.SIMILARITY_PROVIDER}'. Options: gemini, replicate")
