"""Clients for the hosted text-generation and text-to-image endpoints."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

import httpx

from .config import DEFAULT_IMAGE_ENDPOINT, DEFAULT_TEXT_ENDPOINT, EndpointConfig
from .errors import ExternalServiceError, ValidationError

logger = logging.getLogger("supportdesk.ai")

DESCRIPTION_PROMPT = (
    "Write a short 3 line, catchy description for a {color} {brand} {product} "
    "with features: {features}."
)
DESCRIPTION_FALLBACK = "No description generated."
DEFAULT_IMAGE_CONTENT_TYPE = "image/jpeg"


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict):
                return _extract_error_message(value, default)
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _normalize_features(features: object) -> str:
    if isinstance(features, str):
        return features.strip()
    if isinstance(features, Sequence):
        return ", ".join(str(item).strip() for item in features if str(item).strip())
    return ""


def _auth_headers(endpoint: EndpointConfig) -> Dict[str, str]:
    api_key = endpoint.api_key()
    if not api_key:
        raise ExternalServiceError(
            f"AI provider token is not configured. Set {endpoint.api_key_env}."
        )
    return {"Authorization": f"Bearer {api_key}"}


class _EndpointClient:
    def __init__(self, endpoint: EndpointConfig, *, client: Optional[httpx.Client] = None) -> None:
        self._endpoint = endpoint
        self._post: Callable[..., httpx.Response] = client.post if client is not None else httpx.post

    @property
    def endpoint(self) -> EndpointConfig:
        return self._endpoint

    def _send(self, payload: Dict[str, object]) -> httpx.Response:
        headers = _auth_headers(self._endpoint)
        try:
            return self._post(
                self._endpoint.url,
                json=payload,
                headers=headers,
                timeout=self._endpoint.timeout,
            )
        except httpx.RequestError as exc:
            logger.error("Request to %s failed: %s", self._endpoint.url, exc)
            raise ExternalServiceError(f"Failed to contact AI provider: {exc}") from exc


class TextGenerationClient(_EndpointClient):
    """Generate marketing copy through an OpenAI-compatible chat endpoint."""

    def __init__(self, endpoint: EndpointConfig = DEFAULT_TEXT_ENDPOINT, *, client: Optional[httpx.Client] = None) -> None:
        super().__init__(endpoint, client=client)

    def generate_description(self, product: str, brand: str, color: str, features: object) -> str:
        fields = {
            "product": _clean(product),
            "brand": _clean(brand),
            "color": _clean(color),
            "features": _normalize_features(features),
        }
        if not all(fields.values()):
            raise ValidationError("Missing fields")

        prompt = DESCRIPTION_PROMPT.format(**fields)
        response = self._send(
            {
                "model": self._endpoint.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": 60,
                "temperature": 0.7,
            }
        )

        try:
            result = response.json()
        except ValueError:
            result = None

        if response.status_code >= 400 or not isinstance(result, dict) or result.get("error"):
            message = _extract_error_message(
                result if result is not None else response.text,
                f"Text generation failed with status {response.status_code}",
            )
            logger.error("Text generation error from %s: %s", self._endpoint.model, message)
            raise ExternalServiceError(message, provider_status=response.status_code)

        choices = result.get("choices") or []
        text = ""
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message_payload = choices[0].get("message") or {}
            if isinstance(message_payload, dict):
                text = str(message_payload.get("content") or "").strip()
        return text or DESCRIPTION_FALLBACK


@dataclass(frozen=True)
class GeneratedImage:
    content: bytes
    content_type: str

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class ImageGenerationClient(_EndpointClient):
    """Render an image from a text prompt. The provider answers with raw bytes."""

    def __init__(self, endpoint: EndpointConfig = DEFAULT_IMAGE_ENDPOINT, *, client: Optional[httpx.Client] = None) -> None:
        super().__init__(endpoint, client=client)

    def generate_image(self, prompt: str) -> GeneratedImage:
        cleaned = _clean(prompt)
        if not cleaned:
            raise ValidationError("Prompt is required")

        response = self._send({"inputs": cleaned})
        if response.status_code >= 400:
            message = response.text.strip() or f"Image generation failed with status {response.status_code}"
            logger.error("Image generation error from %s: %s", self._endpoint.model, message)
            raise ExternalServiceError(message, provider_status=response.status_code)

        if not response.content:
            raise ExternalServiceError("Image provider returned an empty response")

        raw_type = response.headers.get("content-type") or DEFAULT_IMAGE_CONTENT_TYPE
        content_type = raw_type.split(";", 1)[0].strip().lower()
        if not content_type.startswith("image/"):
            logger.error(
                "Image provider %s answered with non-image content type %s",
                self._endpoint.model,
                content_type,
            )
            raise ExternalServiceError(
                f"Image provider returned {content_type or 'unknown content'} instead of an image"
            )
        return GeneratedImage(content=response.content, content_type=content_type)


@dataclass(frozen=True)
class ExplorationResult:
    description: str
    image: Optional[GeneratedImage] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "description": self.description,
            "image": self.image.to_data_url() if self.image is not None else None,
            "error": self.error,
        }


class ProductExplorer:
    """Chain text generation into image generation.

    The image prompt is the generated description. A failure in the image
    step is reported on the result and the description is kept.
    """

    def __init__(self, text_client: TextGenerationClient, image_client: ImageGenerationClient) -> None:
        self._text_client = text_client
        self._image_client = image_client

    def explore(self, product: str, brand: str, color: str, features: object) -> ExplorationResult:
        description = self._text_client.generate_description(product, brand, color, features)
        try:
            image = self._image_client.generate_image(description)
        except ExternalServiceError as exc:
            logger.warning("Image generation failed after description succeeded: %s", exc)
            return ExplorationResult(description=description, error=str(exc))
        return ExplorationResult(description=description, image=image)


__all__ = [
    "ExplorationResult",
    "GeneratedImage",
    "ImageGenerationClient",
    "ProductExplorer",
    "TextGenerationClient",
]
