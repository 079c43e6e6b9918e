"""Gemini-backed classification of financial email attachments."""

import base64
import json
import re
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from finsync.config.settings import ClassifierConfig, settings
from finsync.models.document import Classification, DocType
from finsync.utils.logging import get_logger
from finsync.utils.retry import RetryPolicy, with_retry

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

METADATA_PROMPT = """
Analyze the following email metadata and determine if it contains a financial document.
Subject: "{subject}"
Snippet: "{snippet}"
Attachment Name: "{filename}"

Classify it into one of: INVOICE, BANK_STATEMENT, RECEIPT, TAX_LETTER, or OTHER.
Also extract the Vendor/Sender Name, estimated Amount, and Currency if possible.

Provide a confidence score (0-100) indicating how certain you are about this classification.
Higher scores mean higher confidence in the classification accuracy.
"""

IMAGE_PROMPT = """
Analyze this image. It is likely a receipt, invoice, or financial document.
Extract the following details:
- Type: (INVOICE, RECEIPT, BANK_STATEMENT, TAX_LETTER, OTHER)
- Vendor Name: The merchant or sender.
- Amount: The total amount.
- Currency: The currency code (e.g. USD, ZAR).
- Date: The transaction date (YYYY-MM-DD).
- Reasoning: Brief explanation of classification.
- Confidence: A score from 0-100 indicating certainty about the classification.
"""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "type": {"type": "STRING", "enum": [t.value for t in DocType]},
        "vendorName": {"type": "STRING"},
        "amount": {"type": "STRING"},
        "currency": {"type": "STRING"},
        "date": {"type": "STRING"},
        "reasoning": {"type": "STRING"},
        "confidence": {"type": "NUMBER"},
    },
    "required": ["type", "vendorName", "confidence"],
}


class ClassifierClient(Protocol):
    """Anything that can classify an attachment. Failures return None."""

    async def classify(
        self, subject: str, snippet: str, filename: Optional[str] = None
    ) -> Optional[Classification]:
        """Classify from email metadata."""
        ...

    async def classify_image(self, content: bytes, mime_type: str) -> Optional[Classification]:
        """Classify from the document image itself."""
        ...


def strip_code_fences(text: str) -> str:
    """Return the body of a markdown code block if the model wrapped its JSON in one."""
    match = _CODE_FENCE.search(text)
    return match.group(1) if match else text


def requires_review(classification: Optional[Classification], threshold: float) -> bool:
    """Whether a document should be flagged for a human to check."""
    if classification is None or classification.confidence is None:
        return True
    return classification.confidence < threshold


def _retry_policy(config: ClassifierConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.max_attempts,
        base_delay=config.base_delay_seconds,
        max_delay=config.max_delay_seconds,
        retryable_statuses=tuple(settings.retry.retryable_statuses),
    )


class ProxyClassifier:
    """
    Classifies email metadata through the edge proxy that holds the Gemini API key.

    The proxy only accepts metadata (subject, snippet, file name). Image
    classification goes to Gemini directly through ``image_client``, which
    needs ``GEMINI_API_KEY``; without one, images are not classified.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        image_client: Optional["GeminiClassifier"] = None,
    ) -> None:
        self.config = config or settings.classifier
        self.retry = retry or _retry_policy(self.config)
        self._transport = transport
        self.image_client = image_client

    async def classify(
        self, subject: str, snippet: str, filename: Optional[str] = None
    ) -> Optional[Classification]:
        return await self._post(
            {"subject": subject, "snippet": snippet, "fileName": filename},
            operation="classifier.proxy.classify",
        )

    async def classify_image(self, content: bytes, mime_type: str) -> Optional[Classification]:
        if self.image_client is None:
            logger.debug("Image classification disabled, no Gemini API key configured", mime_type=mime_type)
            return None
        return await self.image_client.classify_image(content, mime_type)

    async def _post(self, payload: dict[str, Any], operation: str) -> Optional[Classification]:
        async def attempt() -> dict[str, Any]:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.config.proxy_url, json=payload)
                response.raise_for_status()
                return response.json()

        try:
            data = await with_retry(attempt, self.retry, operation=operation)
            return Classification.model_validate(data)
        except Exception as e:
            logger.error("Classification failed", operation=operation, error=str(e))
            return None


class GeminiClassifier:
    """Calls the Gemini ``generateContent`` REST endpoint directly with an API key."""

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or settings.classifier
        self.retry = retry or _retry_policy(self.config)
        self._transport = transport

    @property
    def endpoint(self) -> str:
        base = self.config.api_base_url.rstrip("/")
        return f"{base}/models/{self.config.model}:generateContent"

    async def classify(
        self, subject: str, snippet: str, filename: Optional[str] = None
    ) -> Optional[Classification]:
        prompt = METADATA_PROMPT.format(subject=subject, snippet=snippet, filename=filename or "None")
        return await self._generate([{"text": prompt}], operation="classifier.gemini.classify")

    async def classify_image(self, content: bytes, mime_type: str) -> Optional[Classification]:
        parts = [
            {"text": IMAGE_PROMPT},
            {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(content).decode("ascii")}},
        ]
        return await self._generate(parts, operation="classifier.gemini.classify_image")

    async def _generate(self, parts: list[dict[str, Any]], operation: str) -> Optional[Classification]:
        if self.config.api_key is None:
            logger.warning("No Gemini API key configured, classification disabled")
            return None

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }
        headers = {"x-goog-api-key": self.config.api_key.get_secret_value()}

        async def attempt() -> dict[str, Any]:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.endpoint, json=body, headers=headers)
                response.raise_for_status()
                return response.json()

        try:
            data = await with_retry(attempt, self.retry, operation=operation)
            text = data["candidates"][0]["content"]["parts"][0].get("text") or "{}"
            return Classification.model_validate(json.loads(strip_code_fences(text)))
        except (KeyError, IndexError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Unexpected classifier response", operation=operation, error=str(e))
            return None
        except Exception as e:
            logger.error("Classification failed", operation=operation, error=str(e))
            return None


def build_classifier(config: Optional[ClassifierConfig] = None) -> ClassifierClient:
    """Pick the proxy or direct client once, from ``CLASSIFIER_MODE``."""
    config = config or settings.classifier
    if config.mode == "direct":
        logger.info("Using direct Gemini classifier", model=config.model)
        return GeminiClassifier(config)
    image_client = GeminiClassifier(config) if config.api_key is not None else None
    logger.info("Using classifier proxy", proxy_url=config.proxy_url, image_classification=image_client is not None)
    return ProxyClassifier(config, image_client=image_client)
