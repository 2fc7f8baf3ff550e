"""
Clients for the external AI service used by classification and the vision
fallback of the extraction cascade.

The pipeline only depends on the two small protocols below. When no API key
is configured the null client is injected, so the keyword fallback is taken
through the same code path as a failing remote call.
"""
import base64
import logging
from typing import Any, Protocol

import httpx

from intake.config import Settings, settings as default_settings
from intake.exceptions import ClassificationUnavailable

logger = logging.getLogger("intake.llm")

VISION_PROMPT = (
    "Extract all text from this document image. Include all visible text, numbers, dates, "
    "and information. Preserve the structure and formatting as much as possible. If this is "
    "a passport, ID card, contract, or official document, extract all relevant details "
    "including dates, names, numbers, and any other important information. Return only the "
    "extracted text, no explanations."
)


class ClassificationClient(Protocol):
    configured: bool

    def generate(self, prompt: str) -> str:
        ...


class VisionClient(Protocol):
    def extract_text(self, image: bytes, mime_type: str) -> str:
        ...


class NullClassificationClient:
    configured = False

    def generate(self, prompt: str) -> str:
        raise ClassificationUnavailable("AI classification service is not configured")


def _collect_gemini_text(response_payload: Any) -> str | None:
    # Malformed envelopes count as no text.
    if not isinstance(response_payload, dict):
        return None
    candidates = response_payload.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None

    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())

    if extracted:
        return "\n".join(extracted)
    return None


class GeminiClient:
    """Gemini REST client covering text classification and image text extraction."""

    configured = True

    def __init__(
        self,
        api_key: str,
        model: str,
        vision_models: list[str],
        base_url: str,
        timeout: float,
        http_client: httpx.Client | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._vision_models = vision_models
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

    def _endpoint(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:generateContent"

    def _post(self, model: str, payload: dict) -> Any:
        response = self._http.post(
            self._endpoint(model),
            params={"key": self._api_key},
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        return response.json()

    def generate(self, prompt: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            response_payload = self._post(self._model, payload)
        except httpx.HTTPStatusError as exc:
            raise ClassificationUnavailable(
                f"Gemini request failed with HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ClassificationUnavailable(f"Gemini request failed: {exc}") from exc

        text = _collect_gemini_text(response_payload)
        if not text:
            raise ClassificationUnavailable("Gemini response did not contain text content")
        return text

    def extract_text(self, image: bytes, mime_type: str) -> str:
        payload = {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode("ascii")}},
                    {"text": VISION_PROMPT},
                ],
            }],
        }
        for model in self._vision_models:
            try:
                text = _collect_gemini_text(self._post(model, payload))
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Gemini vision model %s failed: %s", model, exc)
                continue
            if text:
                logger.info("Gemini vision model %s extracted %d characters", model, len(text))
                return text
            logger.warning("Gemini vision model %s returned no text, trying next model", model)
        return ""


def build_classification_client(config: Settings | None = None) -> ClassificationClient:
    config = config or default_settings
    if not config.gemini_api_key:
        logger.info("No Gemini API key configured; classification uses keyword rules only")
        return NullClassificationClient()
    return GeminiClient(
        api_key=config.gemini_api_key,
        model=config.gemini_model,
        vision_models=config.gemini_vision_models,
        base_url=config.gemini_base_url,
        timeout=config.ai_timeout_seconds,
    )


def build_vision_client(config: Settings | None = None) -> VisionClient | None:
    config = config or default_settings
    if not config.gemini_api_key:
        return None
    return GeminiClient(
        api_key=config.gemini_api_key,
        model=config.gemini_model,
        vision_models=config.gemini_vision_models,
        base_url=config.gemini_base_url,
        timeout=config.ai_timeout_seconds,
    )
