"""
Knowledge oracle client.

Asks Claude for a likely product image URL or product page URL for a piece of
equipment. The answer is untrusted: it is parsed defensively, gated on the
confidence tier, and the URL must pass strict validation before it is handed
to a strategy. Every failure degrades to "no candidate".
"""

import json
import re
from pathlib import Path
from typing import Any, Optional

import anthropic
from loguru import logger

from equipment_images.acquisition.errors import OracleLowConfidence
from equipment_images.acquisition.types import CandidateURL, ConfidenceTier
from equipment_images.config import OracleSettings, settings
from equipment_images.utils.http import InvalidURLError, validate_url

PROMPTS_DIR = Path(__file__).parent / "prompts"
IMAGE_URL_PROMPT_PATH = PROMPTS_DIR / "find_image_url.txt"
PRODUCT_PAGE_PROMPT_PATH = PROMPTS_DIR / "find_product_page.txt"

# Keys the oracle has been seen to put the URL under
URL_KEYS = ("url", "image_url", "page_url")


def parse_oracle_response(response_text: str) -> dict | None:
    """Parse the oracle's JSON answer.

    Tries: 1) full text as JSON, 2) markdown code fence, 3) greedy brace match.
    """
    if not response_text:
        return None

    stripped = response_text.strip()
    if stripped.startswith("{"):
        try:
            result = json.loads(stripped)
            return result if isinstance(result, dict) else None
        except json.JSONDecodeError:
            pass

    fence_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", response_text, re.DOTALL)
    if fence_match:
        try:
            result = json.loads(fence_match.group(1))
            return result if isinstance(result, dict) else None
        except json.JSONDecodeError:
            pass

    json_match = re.search(r"\{.*\}", response_text, re.DOTALL)
    if not json_match:
        return None
    try:
        result = json.loads(json_match.group())
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def require_candidate(answer: dict | None, source_label: str) -> CandidateURL:
    """Turn a parsed oracle answer into a candidate.

    Only high/medium confidence answers with a valid http(s) URL survive.

    Raises:
        OracleLowConfidence: The answer holds nothing worth trying
    """
    if not answer:
        raise OracleLowConfidence("No answer")
    if answer.get("found") is False:
        raise OracleLowConfidence("Oracle reported not found")

    confidence = ConfidenceTier.parse(answer.get("confidence"))
    if not confidence.actionable:
        raise OracleLowConfidence(f"Confidence {confidence.value}")

    url: Any = next((answer.get(k) for k in URL_KEYS if answer.get(k)), None)
    if not isinstance(url, str):
        raise OracleLowConfidence("No URL in answer")

    try:
        validated = validate_url(url)
    except InvalidURLError as e:
        logger.warning(f"Oracle returned unusable URL for {source_label}: {e}")
        raise OracleLowConfidence(str(e)) from e

    source = answer.get("source")
    return CandidateURL(
        url=str(validated),
        confidence=confidence,
        source_label=source if isinstance(source, str) else source_label,
    )


def candidate_from_answer(answer: dict | None, source_label: str) -> CandidateURL | None:
    """Like require_candidate, but a low-confidence answer is just None."""
    try:
        return require_candidate(answer, source_label)
    except OracleLowConfidence as e:
        logger.debug(f"No {source_label} candidate ({e.kind}): {e}")
        return None


class OracleClient:
    """Queries the knowledge oracle for image and product-page candidates."""

    def __init__(
        self,
        client: Optional[anthropic.Anthropic] = None,
        oracle_settings: Optional[OracleSettings] = None,
    ):
        self.settings = oracle_settings or settings.oracle
        self._client = client

    @property
    def client(self) -> Optional[anthropic.Anthropic]:
        if self._client is None and self.settings.anthropic_api_key:
            self._client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.timeout,
            )
        return self._client

    def find_image_url(
        self, manufacturer: str | None, model: str | None, product_name: str | None = None
    ) -> CandidateURL | None:
        """Ask for a direct product image URL."""
        prompt = _render(IMAGE_URL_PROMPT_PATH, manufacturer, model, product_name)
        return self._query(prompt, self.settings.max_tokens_image, "image_url")

    def find_product_page_url(
        self, manufacturer: str | None, model: str | None, product_name: str | None = None
    ) -> CandidateURL | None:
        """Ask for the official product page URL."""
        prompt = _render(PRODUCT_PAGE_PROMPT_PATH, manufacturer, model, product_name)
        return self._query(prompt, self.settings.max_tokens_page, "product_page")

    def _query(self, prompt: str, max_tokens: int, label: str) -> CandidateURL | None:
        client = self.client
        if client is None:
            logger.warning("No Anthropic API key, oracle disabled")
            return None

        try:
            response = client.messages.create(
                model=self.settings.model,
                max_tokens=max_tokens,
                temperature=0.0,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AnthropicError as e:
            logger.error(f"Oracle API error ({label}): {e}")
            return None

        if not response.content or not hasattr(response.content[0], "text"):
            logger.warning(f"Empty or non-text oracle response ({label})")
            return None

        answer = parse_oracle_response(response.content[0].text)
        if answer is None:
            logger.warning(f"Could not parse oracle response ({label})")
            return None

        candidate = candidate_from_answer(answer, label)
        if candidate:
            logger.info(f"Oracle {label} candidate ({candidate.confidence.value}): {candidate.url}")
        return candidate


def _render(path: Path, manufacturer: str | None, model: str | None, product_name: str | None) -> str:
    template = path.read_text(encoding="utf-8")
    return template.format(
        manufacturer=manufacturer or "Unknown",
        model=model or "Unknown",
        product_name=product_name or "N/A",
    )
