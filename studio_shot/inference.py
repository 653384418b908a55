"""Image transformation providers and the async client facade.

Every provider takes raw image bytes plus a MIME type and returns new image
bytes, or raises a TransformError describing what went wrong.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import requests
from openai import OpenAI


STUDIO_PROMPT = (
    "Transform this product photo into a professional, studio-quality image for an "
    "e-commerce website. Replace the background with a clean, light gray studio "
    "background (#f0f0f0). Enhance the lighting, color balance, and sharpness to make "
    "the product look appealing and high-quality. Do not add any text, watermarks, "
    "or other objects."
)

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash-image-preview",
    "openai": "gpt-image-1",
    "remote": "",
}

logger = logging.getLogger("studio.inference")


class TransformError(Exception):
    """Base class for failed transformations."""


class TransformNetworkError(TransformError):
    """The request never got an answer."""


class TransformServiceError(TransformError):
    """The service answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NoImageReturnedError(TransformError):
    """The service succeeded but produced no image."""

    def __init__(self, model_text: Optional[str] = None):
        self.model_text = (model_text or "").strip() or None
        detail = self.model_text or "No image data returned by the model."
        super().__init__(f"Image generation failed. Model response: {detail}")


class ImageProvider(ABC):
    """Abstract image transformation provider."""

    @abstractmethod
    def transform(self, image: bytes, mime_type: str, model: str) -> bytes:
        raise NotImplementedError


class GeminiImageProvider(ImageProvider):
    def __init__(self, api_key: Optional[str] = None):
        api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise RuntimeError(
                "GEMINI_API_KEY (or GOOGLE_API_KEY) is required for the Gemini provider"
            )
        genai.configure(api_key=api_key)
        self._genai = genai

    def transform(self, image: bytes, mime_type: str, model: str) -> bytes:
        gm = self._genai.GenerativeModel(model)
        try:
            resp = gm.generate_content([{"mime_type": mime_type, "data": image}, STUDIO_PROMPT])
        except Exception as e:
            raise TransformServiceError(str(e)) from e

        texts = []
        for candidate in (getattr(resp, "candidates", None) or [])[:1]:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                data = getattr(inline, "data", None)
                if data:
                    # The SDK hands back raw bytes; tolerate base64 text too
                    return data if isinstance(data, bytes) else base64.b64decode(data)
                text = getattr(part, "text", None)
                if text:
                    texts.append(text)
        raise NoImageReturnedError("".join(texts))


class OpenAIImageProvider(ImageProvider):
    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self._api_key:
            raise RuntimeError("OPENAI_API_KEY is required when using the OpenAI provider")

    def transform(self, image: bytes, mime_type: str, model: str) -> bytes:
        client = OpenAI(api_key=self._api_key)
        extension = mime_type.split("/")[-1] or "png"
        try:
            resp = client.images.edit(
                model=model,
                image=(f"upload.{extension}", image, mime_type),
                prompt=STUDIO_PROMPT,
            )
        except Exception as e:
            raise TransformServiceError(str(e)) from e
        items = getattr(resp, "data", None) or []
        b64 = getattr(items[0], "b64_json", None) if items else None
        if not b64:
            raise NoImageReturnedError()
        return base64.b64decode(b64)


class RemoteImageProvider(ImageProvider):
    """Speaks the ``/api/transform`` JSON contract of another deployment."""

    def __init__(self, url: Optional[str] = None, timeout: float = 300):
        self.url = url or os.getenv("STUDIO_TRANSFORM_URL")
        if not self.url:
            raise RuntimeError("STUDIO_TRANSFORM_URL is required for the remote provider")
        self.timeout = timeout

    def transform(self, image: bytes, mime_type: str, model: str) -> bytes:
        payload = {"image": base64.b64encode(image).decode("ascii"), "mimeType": mime_type}
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransformNetworkError(f"Service error: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not resp.ok:
            message = data.get("message") or resp.reason or f"Request failed with status {resp.status_code}"
            raise TransformServiceError(f"Service error: {message}", status_code=resp.status_code)
        if not data.get("image"):
            raise NoImageReturnedError(data.get("message"))
        return base64.b64decode(data["image"])


class TransformClient:
    """Facade that routes images to a configured provider and model.

    Usage:
        client = TransformClient(provider="gemini")
        studio_bytes = await client.transform(raw_bytes, "image/png")
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        transform_url: Optional[str] = None,
    ) -> None:
        provider = (provider or os.getenv("STUDIO_PROVIDER") or "gemini").lower()
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {provider}")

        self.provider_name = provider
        if provider == "gemini":
            self.provider: ImageProvider = GeminiImageProvider(api_key=gemini_api_key)
        elif provider == "openai":
            self.provider = OpenAIImageProvider(api_key=openai_api_key)
        else:  # remote
            self.provider = RemoteImageProvider(url=transform_url)
        self.model = model or os.getenv("STUDIO_MODEL") or DEFAULT_MODELS[provider]

    def transform_sync(self, image: bytes, mime_type: str) -> bytes:
        try:
            return self.provider.transform(image, mime_type, self.model)
        except TransformError:
            raise
        except Exception as e:
            # Anything else from the SDKs is a service failure, not a crash
            raise TransformServiceError(str(e)) from e

    async def transform(self, image: bytes, mime_type: str) -> bytes:
        result = await asyncio.to_thread(self.transform_sync, image, mime_type)
        if not result:
            raise NoImageReturnedError()
        return result


class UnavailableTransformClient:
    """Stand-in used when no provider could be configured.

    Every transformation fails with the configuration problem as its message,
    so jobs surface it as their error instead of the session failing to start.
    """

    provider_name = "unavailable"
    model = ""

    def __init__(self, reason: str):
        self.reason = reason

    async def transform(self, image: bytes, mime_type: str) -> bytes:
        raise TransformServiceError(self.reason)
