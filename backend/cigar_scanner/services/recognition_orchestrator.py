"""
Cigar recognition pipeline.

Flow for an image:
1. Compress the image to JPEG and build the structured prompt
2. Run the prompt through the candidate models (GeminiBackend.run_with_fallback)
3. Resolve an image URL when confident enough and image search is on
4. Overlay verified catalog details (CatalogMatcher.get_details)
5. Record stats and the raw model answer in the background, never
   blocking the response

Text queries check the catalog first and only call a model on a miss.
"""

import copy
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from ..config import Config
from ..errors import ParseError
from ..models.enums import CigarStrength
from ..models.records import CatalogEntry, RecognitionResult
from ..normalization import normalize_name
from ..settings import RecognitionSettings, get_settings
from .catalog_matcher import CatalogMatcher
from .image_resolver import ImageResolver
from .inference_backend import GeminiBackend, parse_json_object
from .recognition_stats import RecognitionStatsTracker

# HEIC uploads from phones
register_heif_opener()

logger = logging.getLogger(__name__)

# Longest names first so "Romeo y Julieta" wins over a shorter prefix
KNOWN_BRANDS = sorted([
    "Cohiba", "Montecristo", "Romeo y Julieta", "Partagas", "Davidoff",
    "Padron", "Arturo Fuente", "Oliva", "My Father", "Drew Estate",
    "Macanudo", "Rocky Patel", "Ashton", "Perdomo", "CAO",
    "Liga Privada", "Undercrown", "Plasencia", "Alec Bradley", "Tatuaje",
], key=len, reverse=True)

# Inferred text-only answers are slightly less trustworthy than image ones
TEXT_CONFIDENCE_FACTOR = 0.9

JSON_SCHEMA = """{
  "brand": "string (manufacturer, e.g. \\"Cohiba\\")",
  "name": "string (full product name including brand and size, e.g. \\"Cohiba Robusto\\")",
  "origin": "string or null (country of manufacture)",
  "size": "string or null (vitola, e.g. \\"Robusto\\")",
  "flavor_profile": ["string", "..."],
  "strength": "Mild | Medium-Mild | Medium | Medium-Full | Full | Unknown",
  "wrapper": "string or null",
  "binder": "string or null",
  "filler": "string or null",
  "foot_notes": ["tasting notes for the first third"],
  "body_notes": ["tasting notes for the second third"],
  "head_notes": ["tasting notes for the final third"],
  "description": "string",
  "rating": "number 0-100 or null",
  "rating_source": "string or null (publication the rating comes from)",
  "brand_description": "string or null",
  "brand_founded_year": "integer or null",
  "brand_country": "string or null",
  "confidence": "number 0.0-1.0"
}"""

CONFIDENCE_RULES = """Confidence rules:
- 0.85-0.95: the cigar is clearly identified and the details are well established.
- 0.65-0.80: details are inferred (for example a dark wrapper suggests a Maduro blend). Phrase inferred details with a qualifier such as "likely" or "typical".
- 0.50-0.65: there is no real basis for a detail. Set that field to null.
Never invent a rating. Only report a rating if it comes from a named publication (for example Cigar Aficionado), and name it in rating_source. Otherwise rating and rating_source are null."""

IMAGE_PROMPT = f"""Analyze this photo of a cigar. Identify the brand, the specific product name and size (vitola), origin, construction, strength and expected tasting notes for each third.

Return ONLY a JSON object with this schema:
{JSON_SCHEMA}

{CONFIDENCE_RULES}"""


def build_text_prompt(name: str, brand: str) -> str:
    """Prompt for a text query; the schema is appended verbatim."""
    return f"""Provide details for the cigar "{name}" by {brand}.
Identify the origin, size (vitola), construction, strength and expected tasting notes for each third.

Return ONLY a JSON object with this schema:
{JSON_SCHEMA}

{CONFIDENCE_RULES}"""


def compress_image(image_bytes: bytes, max_size: int = Config.VISION_MAX_IMAGE_BYTES) -> bytes:
    """
    Normalize image to JPEG and compress to fit the inline data limit.

    Strategy:
    1. If already JPEG and under limit, return as-is (fast path)
    2. If non-JPEG (PNG, WebP, HEIC, etc.), convert to JPEG
    3. If oversized, reduce JPEG quality (85 -> 25)
    4. If still too large, resize progressively (80% -> 30%)

    Raises:
        ValueError: bytes are not a decodable image
    """
    is_jpeg = image_bytes[:2] == b'\xff\xd8'
    if is_jpeg and len(image_bytes) <= max_size:
        return image_bytes

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unsupported image data: {e}") from e

    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    if len(image_bytes) <= max_size:
        output = io.BytesIO()
        img.save(output, format="JPEG", quality=95)
        return output.getvalue()

    logger.info(f"Compressing image: {len(image_bytes) / 1024 / 1024:.1f}MB -> target {max_size / 1024 / 1024:.1f}MB")

    quality = 85
    while quality >= 25:
        output = io.BytesIO()
        img.save(output, format="JPEG", quality=quality)
        if output.tell() <= max_size:
            return output.getvalue()
        quality -= 15

    scale = 0.8
    while scale >= 0.3:
        new_size = (int(img.width * scale), int(img.height * scale))
        resized = img.resize(new_size, Image.Resampling.LANCZOS)
        output = io.BytesIO()
        resized.save(output, format="JPEG", quality=70)
        if output.tell() <= max_size:
            logger.info(f"Resized to {scale:.0%}: {output.tell() / 1024 / 1024:.1f}MB")
            return output.getvalue()
        scale -= 0.1

    return output.getvalue()


def parse_text_query(query: str, brand: Optional[str] = None) -> tuple[str, str]:
    """
    Split free text into (brand, full name).

    "Montecristo No.2"        -> ("Montecristo", "Montecristo No.2")
    "Romeo y Julieta Churchill" -> ("Romeo y Julieta", "Romeo y Julieta Churchill")
    "Churchill by Romeo y Julieta" -> ("Romeo y Julieta", "Churchill by Romeo y Julieta")
    "Hoyo Epicure 2"          -> ("Hoyo", "Hoyo Epicure 2")
    """
    text = " ".join(query.split())
    if brand:
        brand = brand.strip()
        if normalize_name(text).startswith(normalize_name(brand)):
            return brand, text
        return brand, f"{brand} {text}"

    lowered = text.lower()
    for known in KNOWN_BRANDS:
        if lowered == known.lower() or lowered.startswith(known.lower() + " "):
            return known, text
    # "Churchill by Romeo y Julieta"
    padded = f" {lowered} "
    for known in KNOWN_BRANDS:
        if f" {known.lower()} " in padded:
            return known, text
    return text.split(" ")[0], text


def _as_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(item).strip() for item in value if item and str(item).strip()]


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "unknown", "n/a"):
        return None
    return text


def _as_int(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def result_from_payload(data: dict, model: Optional[str] = None) -> RecognitionResult:
    """
    Build a RecognitionResult from a model's JSON answer.

    Confidence is clamped into [0, INFERRED_CONFIDENCE_CAP]; ratings
    without a named source are dropped.

    Raises:
        ParseError: the answer has no usable name
    """
    name = _as_text(data.get("name"))
    if not name:
        raise ParseError("Response is missing 'name'", model=model)
    brand = _as_text(data.get("brand")) or name.split(" ")[0]

    try:
        confidence = float(data.get("confidence", Config.DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = Config.DEFAULT_CONFIDENCE
    confidence = max(0.0, min(confidence, Config.INFERRED_CONFIDENCE_CAP))

    rating_source = _as_text(data.get("rating_source"))
    rating = None
    if rating_source:
        try:
            rating = max(0.0, min(float(data.get("rating")), 100.0))
        except (TypeError, ValueError):
            rating = None
    if rating is None:
        rating_source = None

    return RecognitionResult(
        brand=brand,
        name=name,
        origin=_as_text(data.get("origin")),
        size=_as_text(data.get("size") or data.get("vitola")),
        flavor_profile=_as_list(data.get("flavor_profile")),
        strength=CigarStrength.parse(data.get("strength")),
        wrapper=_as_text(data.get("wrapper")),
        binder=_as_text(data.get("binder")),
        filler=_as_text(data.get("filler")),
        foot_notes=_as_list(data.get("foot_notes")),
        body_notes=_as_list(data.get("body_notes")),
        head_notes=_as_list(data.get("head_notes")),
        description=_as_text(data.get("description")),
        rating=rating,
        rating_source=rating_source,
        confidence=confidence,
        brand_description=_as_text(data.get("brand_description")),
        brand_founded_year=_as_int(data.get("brand_founded_year")),
        brand_country=_as_text(data.get("brand_country")),
        model=model,
    )


def apply_catalog_details(result: RecognitionResult, entry: CatalogEntry) -> RecognitionResult:
    """Overlay verified catalog values on an inferred result."""
    result.brand = entry.brand
    result.name = entry.name
    for field_name in ("origin", "size", "wrapper", "binder", "filler", "description"):
        value = getattr(entry, field_name)
        if value:
            setattr(result, field_name, value)
    for field_name in ("flavor_profile", "foot_notes", "body_notes", "head_notes"):
        value = getattr(entry, field_name)
        if value:
            setattr(result, field_name, list(value))
    if entry.strength is not None:
        result.strength = entry.strength
    if entry.rating is not None:
        result.rating = entry.rating
        result.rating_source = entry.rating_source
    if not result.image_url and entry.image_url:
        result.image_url = entry.image_url
    result.has_detailed_info = True
    result.catalog_id = entry.id
    result.confidence = Config.CATALOG_CONFIDENCE
    return result


def result_from_catalog(entry: CatalogEntry) -> RecognitionResult:
    """A catalog hit as a recognition result."""
    return apply_catalog_details(
        RecognitionResult(brand=entry.brand, name=entry.name),
        entry,
    )


class RecognitionOrchestrator:
    """
    Runs recognition for images and text queries.

    Usage:
        orchestrator = RecognitionOrchestrator(backend, matcher, resolver, tracker)
        result = await orchestrator.recognize_from_image(jpeg_bytes)
    """

    def __init__(
        self,
        backend: GeminiBackend,
        matcher: CatalogMatcher,
        image_resolver: Optional[ImageResolver],
        stats_tracker: Optional[RecognitionStatsTracker],
        settings: Optional[RecognitionSettings] = None,
        stats_workers: int = 2,
    ):
        self.backend = backend
        self.matcher = matcher
        self.image_resolver = image_resolver
        self.stats_tracker = stats_tracker
        self.settings = settings or get_settings()
        self._executor = ThreadPoolExecutor(max_workers=stats_workers, thread_name_prefix="recognition-stats")

    async def recognize_from_image(self, image: bytes, hint: Optional[str] = None) -> RecognitionResult:
        """
        Identify a cigar from a photo.

        Raises:
            ValueError: image bytes cannot be decoded
            ConfigurationError, BackendRejected, AllBackendsFailedError
        """
        jpeg = compress_image(image)
        prompt = IMAGE_PROMPT
        if hint and hint.strip():
            prompt += f"\n\nThe user says this cigar is probably: {hint.strip()}"

        result, model = await self.backend.run_with_fallback(
            prompt,
            lambda text: result_from_payload(parse_json_object(text)),
            image=(jpeg, "image/jpeg"),
            preferred=self.settings.preferred_models,
        )
        result.model = model
        logger.info(f"Recognized {result.brand} / {result.name} (confidence={result.confidence:.2f})")
        return await self._finish(result)

    async def recognize_from_text(self, name: str, brand: Optional[str] = None) -> RecognitionResult:
        """
        Look a cigar up by name; the catalog is consulted before any model.

        Raises:
            ValueError: empty query
            ConfigurationError, BackendRejected, AllBackendsFailedError
        """
        if not name or not name.strip():
            raise ValueError("Query must not be empty")
        brand, full_name = parse_text_query(name, brand)
        logger.info(f"Text search: brand='{brand}', name='{full_name}'")

        entry = self.matcher.get_details(brand, full_name)
        if entry is not None:
            result = result_from_catalog(entry)
            if not result.image_url:
                await self._attach_image(result)
            self._record_stats(result)
            return result

        prompt = build_text_prompt(full_name, brand)
        result, model = await self.backend.run_with_fallback(
            prompt,
            lambda text: result_from_payload(parse_json_object(text)),
            preferred=self.settings.preferred_models,
        )
        result.model = model
        result.confidence = round(result.confidence * TEXT_CONFIDENCE_FACTOR, 4)
        return await self._finish(result)

    async def _finish(self, result: RecognitionResult) -> RecognitionResult:
        if result.confidence > Config.IMAGE_SEARCH_MIN_CONFIDENCE and not result.image_url:
            await self._attach_image(result)

        # History keeps the model answer itself, before any catalog overlay
        self._record_history(result)

        entry = self.matcher.get_details(result.brand, result.name)
        if entry is not None:
            apply_catalog_details(result, entry)
            logger.info(f"Catalog details applied from entry id={entry.id}")
        else:
            result.has_detailed_info = False
            result.catalog_id = None

        self._record_stats(result)
        return result

    async def _attach_image(self, result: RecognitionResult) -> None:
        if not self.settings.enable_image_search or self.image_resolver is None:
            return
        url = await self.image_resolver.resolve(result.brand, result.name)
        if url:
            result.image_url = url

    def _record_stats(self, result: RecognitionResult) -> None:
        if self.stats_tracker is None:
            return
        self._executor.submit(
            self.stats_tracker.record,
            result.brand,
            result.name,
            result.confidence,
            bool(result.image_url),
            result.has_detailed_info,
        )

    def _record_history(self, result: RecognitionResult) -> None:
        if self.stats_tracker is None:
            return
        self._executor.submit(self.stats_tracker.record_recognition, copy.deepcopy(result))

    def shutdown(self, wait: bool = True) -> None:
        """Stop the stats worker pool, optionally waiting for pending writes."""
        self._executor.shutdown(wait=wait)
