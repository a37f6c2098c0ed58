"""
Gemini inference backend with model fallback.

Two transports per model:
- SDK: google-genai async client (primary)
- REST: direct POST to /{version}/models/{model}:generateContent (secondary)

Candidate models are merged from three prioritized sources:
1. Admin-preferred list (settings), filtered to models known to be available
2. Models discovered through the models listing endpoint, minus no-quota models
3. Hardcoded defaults

For each candidate: SDK first; if the model is unavailable (not found,
unsupported, or the answer would not parse) try REST for the same model;
if that is unavailable too, move to the next candidate. Any other error
stops the loop and propagates.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import httpx
from google import genai
from google.genai import types

from ..config import Config
from ..errors import (
    AllBackendsFailedError,
    BackendRejected,
    BackendUnavailable,
    ConfigurationError,
    ParseError,
    RecognitionError,
    is_unavailable_message,
)
from ..models.enums import ModelSource, Transport
from ..models.records import ModelCandidate

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ModelCapability:
    """What we know about a model id."""
    has_free_quota: bool
    supports_vision: bool = True


# Bump when editing the table below
CAPABILITY_TABLE_VERSION = "2026-10"

CAPABILITY_TABLE: dict[str, ModelCapability] = {
    "gemini-2.5-flash": ModelCapability(has_free_quota=True),
    "gemini-2.5-flash-lite": ModelCapability(has_free_quota=True),
    "gemini-2.5-pro": ModelCapability(has_free_quota=True),
    "gemini-2.0-flash": ModelCapability(has_free_quota=True),
    "gemini-2.0-flash-001": ModelCapability(has_free_quota=True),
    "gemini-2.0-flash-lite": ModelCapability(has_free_quota=True),
    "gemini-1.5-flash": ModelCapability(has_free_quota=True),
    "gemini-1.5-flash-8b": ModelCapability(has_free_quota=True),
    "gemini-1.5-pro": ModelCapability(has_free_quota=True),
    "gemini-pro": ModelCapability(has_free_quota=True, supports_vision=False),
    "gemini-2.0-flash-exp": ModelCapability(has_free_quota=False),
    "gemini-2.0-flash-exp-image-generation": ModelCapability(has_free_quota=False),
    "gemini-2.0-flash-preview-image-generation": ModelCapability(has_free_quota=False),
    "gemini-2.5-flash-preview-tts": ModelCapability(has_free_quota=False, supports_vision=False),
    "gemini-2.5-pro-preview-tts": ModelCapability(has_free_quota=False, supports_vision=False),
    "gemini-2.5-computer-use-preview-10-2025": ModelCapability(has_free_quota=False),
}

# Fallback for ids missing from the table
NO_QUOTA_PATTERNS = ("-exp", "experimental", "preview", "tts", "image-generation", "computer-use")


def has_free_quota(model_id: str) -> bool:
    """Capability table first, substring patterns for unknown ids."""
    capability = CAPABILITY_TABLE.get(model_id)
    if capability is not None:
        return capability.has_free_quota
    lowered = model_id.lower()
    return not any(pattern in lowered for pattern in NO_QUOTA_PATTERNS)


def filter_quota_models(model_ids: list[str]) -> list[str]:
    """Drop no-quota models, unless that would leave nothing."""
    filtered = [model_id for model_id in model_ids if has_free_quota(model_id)]
    return filtered if filtered else list(model_ids)


def build_candidates(
    preferred: list[str],
    discovered: list[str],
    defaults: list[str],
) -> list[ModelCandidate]:
    """
    Merge the three model sources in priority order without duplicates.

    Preferred models are only kept if discovery confirmed them; when
    discovery returned nothing there is nothing to confirm against and
    the preferred list is used as-is.
    """
    available = set(discovered)
    if available:
        preferred = [model_id for model_id in preferred if model_id in available]

    candidates: list[ModelCandidate] = []
    seen: set[str] = set()
    for source, model_ids in (
        (ModelSource.ADMIN, preferred),
        (ModelSource.DISCOVERED, filter_quota_models(discovered)),
        (ModelSource.DEFAULT, defaults),
    ):
        for model_id in model_ids:
            if model_id and model_id not in seen:
                seen.add(model_id)
                candidates.append(ModelCandidate(model_id=model_id, source=source))
    return candidates


def strip_markdown_fences(text: str) -> str:
    """Remove ```json ... ``` wrapping from an LLM answer."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_json_object(text: str) -> dict:
    """
    Parse the JSON object in an LLM answer.

    Raises:
        ParseError: no JSON object could be read
    """
    cleaned = strip_markdown_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Tolerate prose around the object
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ParseError(f"Response is not JSON: {cleaned[:100]!r}")
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise ParseError(f"Response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def classify_error(error: Exception, model: str) -> RecognitionError:
    """Map a transport exception onto the pipeline error kinds."""
    if isinstance(error, RecognitionError):
        return error
    code = getattr(error, "code", None)
    message = str(error)
    if code == 404 or is_unavailable_message(message):
        return BackendUnavailable(f"{model}: {message}", model=model)
    return BackendRejected(f"{model}: {message}", model=model, status_code=code)


class GeminiBackend:
    """
    Gemini client supporting SDK and REST transports and model discovery.

    Usage:
        backend = GeminiBackend()
        data, model = await backend.run_with_fallback(prompt, parse_json_object, image=(jpeg, "image/jpeg"))
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        sdk_client: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_models: Optional[list[str]] = None,
    ):
        """
        Args:
            api_key: Google API key. Falls back to GOOGLE_API_KEY env var.
            host: REST host. Falls back to GEMINI_API_HOST env var.
            sdk_client: Pre-built genai.Client (tests)
            transport: httpx transport for REST and discovery calls (tests)
            default_models: Hardcoded fallback list. Defaults to Config.DEFAULT_MODELS.
        """
        self.api_key = api_key or Config.gemini_api_key()
        self.host = host or Config.gemini_api_host()
        self.default_models = list(default_models or Config.DEFAULT_MODELS)
        self._client = sdk_client
        self._transport = transport
        self._discovered: Optional[list[str]] = None

    def _require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "GOOGLE_API_KEY not set. Create a key at "
                "https://aistudio.google.com/app/apikey and set the env var."
            )
        return self.api_key

    def _get_client(self):
        """Lazy load Gemini client."""
        if self._client is None:
            self._client = genai.Client(api_key=self._require_key())
        return self._client

    def _http(self, timeout: float = Config.BACKEND_HTTP_TIMEOUT) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=timeout)

    # === Model discovery ===

    async def discover_models(self, refresh: bool = False) -> list[str]:
        """
        List gemini models that support generateContent.

        Results are memoised per instance once at least one API version
        answered. If every listing call fails the empty list is returned
        but not memoised, so the next call queries again.
        """
        if self._discovered is not None and not refresh:
            return list(self._discovered)

        api_key = self._require_key()
        models: list[str] = []
        answered = False
        async with self._http(timeout=10.0) as client:
            for version in Config.DISCOVERY_API_VERSIONS:
                url = f"https://{self.host}/{version}/models"
                try:
                    response = await client.get(url, params={"key": api_key, "pageSize": 1000})
                    response.raise_for_status()
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(f"Model discovery failed for {version}: {type(e).__name__}")
                    continue

                answered = True
                for model in payload.get("models", []):
                    model_id = str(model.get("name", "")).removeprefix("models/")
                    methods = model.get("supportedGenerationMethods") or []
                    if "gemini" in model_id and "generateContent" in methods and model_id not in models:
                        models.append(model_id)

        if not answered:
            logger.warning("Model discovery unavailable, will retry on next call")
            return []

        logger.info(f"Discovered {len(models)} gemini models")
        self._discovered = models
        return list(models)

    async def candidate_models(self, preferred: Optional[list[str]] = None) -> list[ModelCandidate]:
        """Ordered, de-duplicated candidate list for one inference call."""
        discovered = await self.discover_models()
        return build_candidates(preferred or [], discovered, self.default_models)

    # === Transports ===

    async def generate_sdk(
        self,
        model: str,
        prompt: str,
        image: Optional[tuple[bytes, str]] = None,
    ) -> str:
        """Call generateContent through the google-genai SDK."""
        client = self._get_client()
        parts = []
        if image is not None:
            data, mime_type = image
            parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        parts.append(types.Part.from_text(text=prompt))

        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=[types.Content(role="user", parts=parts)],
            )
        except Exception as e:
            raise classify_error(e, model) from e

        text = response.text
        if not text:
            raise ParseError(f"{model}: empty response", model=model)
        return text

    async def generate_rest(
        self,
        model: str,
        prompt: str,
        image: Optional[tuple[bytes, str]] = None,
    ) -> str:
        """POST generateContent directly to the REST endpoint."""
        api_key = self._require_key()
        parts: list[dict] = [{"text": prompt}]
        if image is not None:
            data, mime_type = image
            parts.append({
                "inlineData": {
                    "data": base64.standard_b64encode(data).decode("utf-8"),
                    "mimeType": mime_type,
                }
            })

        url = f"https://{self.host}/{Config.GENERATION_API_VERSION}/models/{model}:generateContent"
        async with self._http() as client:
            try:
                response = await client.post(
                    url,
                    params={"key": api_key},
                    json={"contents": [{"parts": parts}]},
                )
            except httpx.HTTPError as e:
                raise BackendRejected(f"{model}: {type(e).__name__}: {e}", model=model) from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            if response.status_code == 404 or is_unavailable_message(message):
                raise BackendUnavailable(f"{model}: {message}", model=model)
            raise BackendRejected(
                f"{model}: HTTP {response.status_code}: {message}",
                model=model,
                status_code=response.status_code,
            )

        try:
            return response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError(f"{model}: unexpected response shape", model=model) from e

    async def generate(
        self,
        model: str,
        prompt: str,
        parse: Callable[[str], T],
        image: Optional[tuple[bytes, str]] = None,
    ) -> tuple[T, Transport]:
        """
        One model, both transports.

        Raises:
            BackendUnavailable: neither transport produced a parseable answer
            BackendRejected / ConfigurationError: propagated unchanged
        """
        try:
            text = await self.generate_sdk(model, prompt, image)
            return parse(text), Transport.SDK
        except BackendUnavailable as e:
            logger.warning(f"SDK call unavailable for {model}, trying REST: {e}")

        text = await self.generate_rest(model, prompt, image)
        return parse(text), Transport.REST

    async def run_with_fallback(
        self,
        prompt: str,
        parse: Callable[[str], T],
        image: Optional[tuple[bytes, str]] = None,
        preferred: Optional[list[str]] = None,
    ) -> tuple[T, str]:
        """
        Try candidate models in order until one answers parseably.

        Returns:
            Tuple of (parsed answer, model id)

        Raises:
            AllBackendsFailedError: every candidate was unavailable
        """
        self._require_key()
        candidates = await self.candidate_models(preferred)
        last_error: Optional[Exception] = None
        attempted: list[str] = []

        for candidate in candidates:
            attempted.append(candidate.model_id)
            try:
                parsed, transport = await self.generate(candidate.model_id, prompt, parse, image)
            except BackendUnavailable as e:
                logger.warning(f"Model {candidate.model_id} ({candidate.source.value}) unavailable: {e}")
                last_error = e
                continue
            logger.info(f"Recognition answered by {candidate.model_id} via {transport.value}")
            return parsed, candidate.model_id

        raise AllBackendsFailedError(last_error, attempted)


_backend_instance: Optional[GeminiBackend] = None


def get_inference_backend() -> GeminiBackend:
    """Get the singleton Gemini backend."""
    global _backend_instance
    if _backend_instance is None:
        _backend_instance = GeminiBackend()
    return _backend_instance


def reset_inference_backend() -> None:
    """Reset the singleton instance (for testing)."""
    global _backend_instance
    _backend_instance = None
