"""
Async vendor client with typed error classification.

Single entry point for every upstream call: ``invoke(vendor, operation,
payload)``. HTTP status codes and structured payload fields are mapped onto
the exception hierarchy in ``model_relay.errors`` so callers never inspect
raw responses. Vendor-specific field mapping lives in the thin helpers at
the bottom of the class.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any

import httpx

from model_relay.config import (
    CREDENTIALS,
    DISPATCH,
    ENDPOINTS,
    MODELS,
    ModelConfig,
    VendorCredentials,
    VendorEndpoints,
)
from model_relay.errors import (
    PAYLOAD_RATE_LIMIT_BACKOFF,
    ConfigurationError,
    MalformedResponseError,
    ModelLoadingError,
    RateLimitedError,
    ServiceUnavailableError,
    UnauthorizedError,
    UnknownVendorError,
    VendorConnectionError,
    VendorError,
    VendorRequestError,
    VendorTimeoutError,
)
from model_relay.utils.logging import audit_logger

logger = logging.getLogger(__name__)

# Hugging Face reports these conditions only as free text in the error field
_LOADING_PATTERNS: tuple[str, ...] = ("loading", "currently loading")
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
)


def _get_metrics() -> dict | None:
    """Lazy import metrics to avoid circular imports."""
    try:
        from model_relay.server import METRICS
        return METRICS
    except ImportError:
        return None


class Vendor(Enum):
    """Upstream API vendors."""

    GEMINI = "gemini"
    STABILITY = "stability"
    HUGGINGFACE = "huggingface"
    CLAUDE = "claude"
    MAILCHANNELS = "mailchannels"


class AsyncVendorClient:
    """Async HTTP client for all vendor APIs."""

    def __init__(
        self,
        credentials: VendorCredentials | None = None,
        endpoints: VendorEndpoints | None = None,
        models: ModelConfig | None = None,
    ) -> None:
        """
        Initialize vendor client.

        Args:
            credentials: API keys. Defaults to config.
            endpoints: Base URLs. Defaults to config.
            models: Upstream model names. Defaults to config.
        """
        self.credentials = credentials or CREDENTIALS
        self.endpoints = endpoints or ENDPOINTS
        self.models = models or MODELS
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(DISPATCH.GENERATION_TIMEOUT, connect=10.0),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncVendorClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def configured_vendors(self) -> dict[str, bool]:
        """Report which vendors have credentials configured."""
        return {
            Vendor.GEMINI.value: bool(self.credentials.GEMINI_API_KEY),
            Vendor.STABILITY.value: bool(self.credentials.STABILITY_API_KEY),
            Vendor.HUGGINGFACE.value: bool(self.credentials.HUGGINGFACE_API_KEY),
            Vendor.CLAUDE.value: bool(self.credentials.ANTHROPIC_API_KEY),
            Vendor.MAILCHANNELS.value: True,
        }

    def _require_key(self, vendor: Vendor, key: str) -> str:
        if not key:
            raise ConfigurationError(f"No API key configured for {vendor.value}")
        return key

    def _build_request(
        self, vendor: Vendor, operation: str
    ) -> tuple[str, dict[str, str], dict[str, str]]:
        """
        Resolve URL, headers and query params for a vendor operation.

        Raises:
            ConfigurationError: If the vendor requires a key that is missing.
        """
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        params: dict[str, str] = {}

        if vendor is Vendor.GEMINI:
            params["key"] = self._require_key(vendor, self.credentials.GEMINI_API_KEY)
            url = f"{self.endpoints.GEMINI_URL.rstrip('/')}/models/{operation}:generateContent"
        elif vendor is Vendor.STABILITY:
            key = self._require_key(vendor, self.credentials.STABILITY_API_KEY)
            headers["Authorization"] = f"Bearer {key}"
            url = (
                f"{self.endpoints.STABILITY_URL.rstrip('/')}"
                f"/v1/generation/{operation}/text-to-image"
            )
        elif vendor is Vendor.HUGGINGFACE:
            key = self._require_key(vendor, self.credentials.HUGGINGFACE_API_KEY)
            headers["Authorization"] = f"Bearer {key}"
            url = f"{self.endpoints.HUGGINGFACE_URL.rstrip('/')}/models/{operation}"
        elif vendor is Vendor.CLAUDE:
            headers["x-api-key"] = self._require_key(
                vendor, self.credentials.ANTHROPIC_API_KEY
            )
            headers["anthropic-version"] = self.models.ANTHROPIC_VERSION
            url = f"{self.endpoints.ANTHROPIC_URL.rstrip('/')}/v1/{operation}"
        elif vendor is Vendor.MAILCHANNELS:
            if self.credentials.MAILCHANNELS_API_KEY:
                headers["X-Api-Key"] = self.credentials.MAILCHANNELS_API_KEY
            url = f"{self.endpoints.MAILCHANNELS_URL.rstrip('/')}/tx/v1/{operation}"
        else:
            raise ConfigurationError(f"Unsupported vendor: {vendor}")

        return url, headers, params

    @staticmethod
    def _default_timeout(vendor: Vendor) -> float:
        return {
            Vendor.GEMINI: DISPATCH.GENERATION_TIMEOUT,
            Vendor.CLAUDE: DISPATCH.GENERATION_TIMEOUT,
            Vendor.STABILITY: DISPATCH.IMAGE_TIMEOUT,
            Vendor.HUGGINGFACE: DISPATCH.INFERENCE_TIMEOUT,
            Vendor.MAILCHANNELS: DISPATCH.EMAIL_TIMEOUT,
        }[vendor]

    @staticmethod
    def _vendor_message(data: Any) -> str | None:
        """Extract the vendor's own error message from a payload, if any."""
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if message:
                return str(message)
        elif isinstance(error, str) and error:
            return error
        message = data.get("message")
        if isinstance(message, str) and message:
            return message
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(e) for e in errors)
        return None

    @staticmethod
    def _signals_loading(data: Any, message: str | None) -> bool:
        if isinstance(data, dict) and "estimated_time" in data:
            return True
        lowered = (message or "").lower()
        return any(pattern in lowered for pattern in _LOADING_PATTERNS)

    @staticmethod
    def _signals_rate_limit(message: str | None) -> bool:
        lowered = (message or "").lower()
        return any(pattern in lowered for pattern in _RATE_LIMIT_PATTERNS)

    def _error_for_status(
        self, vendor: Vendor, status_code: int, data: Any
    ) -> VendorError:
        """Map a non-2xx response onto the vendor error hierarchy."""
        message = self._vendor_message(data)
        kwargs: dict[str, Any] = {"vendor": vendor.value, "status_code": status_code}

        if status_code in (401, 403):
            return UnauthorizedError(message, **kwargs)
        if status_code == 429:
            return RateLimitedError(message, **kwargs)
        if status_code == 503:
            if self._signals_loading(data, message):
                return ModelLoadingError(message, **kwargs)
            return ServiceUnavailableError(message, **kwargs)
        if 400 <= status_code < 500:
            return VendorRequestError(
                message or f"{VendorRequestError.default_message} (HTTP {status_code})",
                **kwargs,
            )
        return UnknownVendorError(
            message or f"{UnknownVendorError.default_message} (HTTP {status_code})",
            **kwargs,
        )

    def _error_for_payload(self, vendor: Vendor, data: Any) -> VendorError | None:
        """
        Classify an error reported inside a 2xx payload.

        Only inference payloads carry errors this way, as a bare ``error`` field.
        """
        if not isinstance(data, dict) or "error" not in data:
            return None

        message = self._vendor_message(data)
        kwargs: dict[str, Any] = {"vendor": vendor.value, "status_code": 200}
        if self._signals_loading(data, message):
            return ModelLoadingError(message, **kwargs)
        if self._signals_rate_limit(message):
            return RateLimitedError(message, backoff=PAYLOAD_RATE_LIMIT_BACKOFF, **kwargs)
        return UnknownVendorError(message, **kwargs)

    @staticmethod
    def _parse_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def invoke(
        self,
        vendor: Vendor,
        operation: str,
        payload: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """
        Send a JSON payload to a vendor operation.

        Args:
            vendor: Target vendor.
            operation: Model name, engine id or endpoint, depending on vendor.
            payload: JSON request body.
            timeout: Request timeout in seconds. Defaults per vendor.

        Returns:
            Decoded JSON response, or an empty dict for bodiless 2xx responses.

        Raises:
            ConfigurationError: Missing credentials.
            TransientVendorError: Loading, rate limited, 503 or 429.
            FatalVendorError: Any other failure.
        """
        url, headers, params = self._build_request(vendor, operation)
        effective_timeout = timeout or self._default_timeout(vendor)
        start_time = time.time()
        success = False
        status_code: int | None = None
        error_msg: str | None = None

        client = await self._get_client()

        try:
            response = await client.post(
                url,
                json=payload,
                headers=headers,
                params=params or None,
                timeout=effective_timeout,
            )
            status_code = response.status_code

            if not 200 <= status_code < 300:
                data = self._parse_json(response)
                error = self._error_for_status(vendor, status_code, data)
                error_msg = str(error)
                logger.warning(
                    f"{vendor.value} returned status {status_code}: {error_msg[:200]}"
                )
                raise error

            if not response.content:
                success = True
                return {}

            try:
                data = response.json()
            except ValueError as e:
                error_msg = f"Invalid JSON response from {vendor.value}: {e}"
                raise MalformedResponseError(
                    error_msg, vendor=vendor.value, status_code=status_code
                ) from e

            payload_error = self._error_for_payload(vendor, data)
            if payload_error is not None and vendor is Vendor.HUGGINGFACE:
                error_msg = str(payload_error)
                raise payload_error

            success = True
            return data

        except httpx.TimeoutException as e:
            error_msg = f"{vendor.value} request timed out after {effective_timeout}s"
            logger.warning(f"Timeout calling {vendor.value}: {e}")
            raise VendorTimeoutError(error_msg, vendor=vendor.value) from e
        except httpx.HTTPError as e:
            error_msg = f"Failed to reach {vendor.value}: {e}"
            logger.error(f"HTTP error calling {vendor.value}: {e}")
            raise VendorConnectionError(error_msg, vendor=vendor.value) from e
        finally:
            duration_ms = (time.time() - start_time) * 1000

            prom_metrics = _get_metrics()
            if prom_metrics:
                prom_metrics["vendor_calls"].labels(
                    vendor=vendor.value,
                    success=str(success).lower(),
                ).observe(duration_ms / 1000)

            audit_logger.log_vendor_call(
                vendor=vendor.value,
                operation=operation,
                duration_ms=duration_ms,
                success=success,
                status_code=status_code,
                error=error_msg,
            )

    # ------------------------------------------------------------------
    # Vendor field mapping
    # ------------------------------------------------------------------

    async def gemini_generate(
        self,
        prompt: str,
        model: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Generate text with a Gemini model and return the first candidate."""
        resolved_model = model or self.models.GEMINI_FLASH_MODEL
        data = await self.invoke(
            Vendor.GEMINI,
            resolved_model,
            {"contents": [{"parts": [{"text": prompt}]}]},
            timeout=timeout,
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected Gemini response shape: {e}", vendor=Vendor.GEMINI.value
            ) from e

    async def claude_message(
        self,
        prompt: str,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> str:
        """Send a single-turn message to Claude and return the text reply."""
        data = await self.invoke(
            Vendor.CLAUDE,
            "messages",
            {
                "model": model or self.models.CLAUDE_MODEL,
                "max_tokens": max_tokens or self.models.CLAUDE_MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=timeout,
        )
        try:
            return "".join(
                block["text"] for block in data["content"] if block.get("type") == "text"
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedResponseError(
                f"Unexpected Claude response shape: {e}", vendor=Vendor.CLAUDE.value
            ) from e

    async def stability_text_to_image(
        self,
        prompt: str,
        style: str = "photographic",
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Generate a 1024x1024 image with Stable Diffusion XL.

        Returns:
            Dict with ``image`` (base64 PNG) and ``seed``.
        """
        data = await self.invoke(
            Vendor.STABILITY,
            self.models.STABILITY_ENGINE,
            {
                "text_prompts": [{"text": prompt, "weight": 1}],
                "cfg_scale": 7,
                "height": 1024,
                "width": 1024,
                "samples": 1,
                "steps": 30,
                "style_preset": style,
            },
            timeout=timeout,
        )
        try:
            artifact = data["artifacts"][0]
            return {"image": artifact["base64"], "seed": artifact.get("seed")}
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected Stability response shape: {e}",
                vendor=Vendor.STABILITY.value,
            ) from e

    async def mailchannels_send(
        self,
        to: str,
        sender: str,
        subject: str,
        body: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a plain-text email through MailChannels."""
        data = await self.invoke(
            Vendor.MAILCHANNELS,
            "send",
            {
                "personalizations": [{"to": [{"email": to}]}],
                "from": {"email": sender},
                "subject": subject,
                "content": [{"type": "text/plain", "value": body}],
            },
            timeout=timeout,
        )
        return data if isinstance(data, dict) else {"response": data}
