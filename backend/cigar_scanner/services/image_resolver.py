"""
Representative image lookup for a recognized cigar.

Strategies, in order:
1. Custom Search image API, results filtered and scored (score_image_url)
2. Ask the inference backend for a single image URL

Every URL must pass a reachability probe (fetched and decoded as an
image within IMAGE_PROBE_TIMEOUT) before it is returned. Failures at
any step fall through to the next candidate; resolve() returns None
rather than raising.
"""

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from ..config import Config
from ..errors import RecognitionError

if TYPE_CHECKING:
    from .inference_backend import GeminiBackend

logger = logging.getLogger(__name__)

# Review sites, retailers, and the Habanos official site
TRUSTED_DOMAINS = [
    "cigaraficionado.com",
    "halfwheel.com",
    "cigar-coop.com",
    "cigardojo.com",
    "cigarsratings.com",
    "cigarinspector.com",
    "cigarjournal.com",
    "leafenthusiast.com",
    "famous-smoke.com",
    "holts.com",
    "cigarsinternational.com",
    "jrcigars.com",
    "neptunecigar.com",
    "habanos.com",
]
MOST_TRUSTED_DOMAINS = TRUSTED_DOMAINS[:2]

REDIRECT_URL_MARKERS = (
    "google.com/url",
    "google.com/imgres",
    "googleusercontent.com",
    "google.com/search",
)
LOW_QUALITY_PATH_MARKERS = ("/cache/", "/temp/", "/resize/", "/thumb/")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
CDN_MARKERS = ("cdn.", "static.", "images.", "img.")

_HEX_HASH = re.compile(r"[a-f0-9]{20,}")
_SINGLE_ITEM = re.compile(r"(?<![a-z])(single|stick)(?![a-z])")
_BAND_LABEL = re.compile(r"(?<![a-z])(band|label)(?![a-z])")
_MULTI_PACK = re.compile(r"(?<![a-z])(box(es)?|bundles?|packs?|sampler|\d+-pack)(?![a-z])")
_THUMBNAIL = re.compile(r"(thumbnail|thumbs?(?![a-z])|[-_]small(?![a-z])|[-_]sm\.|-\d{2,3}x\d{2,3}\.)")

URL_ONLY_PROMPT = """Find one publicly accessible photo URL of this cigar: {brand} {name}.
Prefer a single stick showing the band, from a well-known review site or retailer.
Reply with ONLY the bare image URL (ending in .jpg, .jpeg, .png or .webp), or the word null if you do not know one.
Do not add any other text."""


@dataclass
class ImageCandidate:
    """A scored image URL."""
    url: str
    score: int
    title: str = ""
    context_link: str = ""
    width: int = 0
    height: int = 0


def build_search_query(brand: str, name: str) -> str:
    """Image search query restricted to the trusted sites."""
    sites = " OR ".join(f"site:{domain}" for domain in TRUSTED_DOMAINS)
    subject = name if brand and name.lower().startswith(brand.lower()) else f"{brand} {name}"
    return f'"{subject.strip()}" cigar single stick band ({sites})'


def is_rejected_url(url: str) -> bool:
    """Redirect links, non-http URLs and low-quality paths are never probed."""
    if not url or not isinstance(url, str):
        return True
    lowered = url.lower()
    if not lowered.startswith(("http://", "https://")):
        return True
    if any(marker in lowered for marker in REDIRECT_URL_MARKERS):
        return True
    return any(marker in lowered for marker in LOW_QUALITY_PATH_MARKERS)


def score_image_url(
    url: str,
    width: int = 0,
    height: int = 0,
    title: str = "",
) -> int:
    """
    Linear quality score for an image search hit.

    Bonuses: +60 most trusted domains, +40 other trusted domains,
    +30 direct image file, +20 CDN/static host, +10 shallow path,
    +10/+5 large/medium dimensions, +5 product path, +5 single stick,
    +5 band/label. Penalties: -15 long hex hash, -20 box/bundle/pack,
    -10 thumbnail.
    """
    lowered = url.lower()
    text = f"{lowered} {(title or '').lower()}"
    score = 0

    if any(domain in lowered for domain in MOST_TRUSTED_DOMAINS):
        score += 60
    elif any(domain in lowered for domain in TRUSTED_DOMAINS):
        score += 40

    if any(lowered.endswith(ext) or f"{ext}?" in lowered for ext in IMAGE_EXTENSIONS):
        score += 30

    if any(marker in lowered for marker in CDN_MARKERS):
        score += 20

    if len(lowered.split("/")) <= 6:
        score += 10

    if width >= 800 and height >= 800:
        score += 10
    elif width >= 500 and height >= 500:
        score += 5

    if "/product" in lowered or "/cigar" in lowered:
        score += 5

    if _SINGLE_ITEM.search(text):
        score += 5

    if _BAND_LABEL.search(text):
        score += 5

    if _HEX_HASH.search(lowered):
        score -= 15

    if _MULTI_PACK.search(text):
        score -= 20

    if _THUMBNAIL.search(lowered):
        score -= 10

    return score


def _dimension(value) -> int:
    """Pixel size from a search hit; missing or garbled values count as 0."""
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def parse_url_answer(text: str) -> Optional[str]:
    """Pull a bare URL out of an LLM answer; 'null' or anything else gives None."""
    answer = (text or "").strip().strip("`").strip().strip('"').strip("'")
    if not answer or answer.lower() in ("null", "none"):
        return None
    match = re.search(r"https?://\S+", answer)
    if not match:
        return None
    return match.group(0).rstrip(").,;\"'>")


class ImageResolver:
    """
    Finds a reachable image URL for a cigar.

    Usage:
        resolver = ImageResolver(backend=get_inference_backend())
        url = await resolver.resolve("Cohiba", "Cohiba Robusto")
    """

    def __init__(
        self,
        backend: Optional["GeminiBackend"] = None,
        api_key: Optional[str] = None,
        engine_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        probe_timeout: float = Config.IMAGE_PROBE_TIMEOUT,
    ):
        """
        Args:
            backend: Inference backend for the URL-query fallback. None disables it.
            api_key: Search API key. Falls back to GOOGLE_SEARCH_API_KEY.
            engine_id: Search engine id. Falls back to GOOGLE_SEARCH_ENGINE_ID.
            transport: httpx transport for search and probe calls (tests)
            probe_timeout: Seconds allowed for the reachability probe
        """
        self.backend = backend
        self.api_key = api_key or Config.search_api_key()
        self.engine_id = engine_id or Config.search_engine_id()
        self.probe_timeout = probe_timeout
        self._transport = transport

    async def resolve(self, brand: str, name: str) -> Optional[str]:
        """First probe-passing URL from search, then from the backend, else None."""
        for candidate in await self.search_candidates(brand, name):
            if await self.probe(candidate.url):
                logger.info(f"Image resolved via search (score={candidate.score}): {candidate.url}")
                return candidate.url

        url = await self.query_backend_for_url(brand, name)
        if url and not is_rejected_url(url) and await self.probe(url):
            logger.info(f"Image resolved via inference backend: {url}")
            return url

        logger.info(f"No reachable image found for {brand} / {name}")
        return None

    async def search_candidates(self, brand: str, name: str) -> list[ImageCandidate]:
        """Filtered search hits, best score first."""
        if not self.api_key or not self.engine_id:
            logger.debug("Image search not configured, skipping search strategy")
            return []

        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": build_search_query(brand, name),
            "searchType": "image",
            "num": min(Config.IMAGE_SEARCH_NUM_RESULTS, 10),
            "safe": "active",
            "imgSize": "large",
            "imgType": "photo",
            "fileType": "jpg,png,webp",
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
                response = await client.get(Config.IMAGE_SEARCH_URL, params=params)
                response.raise_for_status()
                items = response.json().get("items") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Image search failed: {type(e).__name__}")
            return []

        candidates = []
        for item in items:
            url = item.get("link")
            if is_rejected_url(url):
                continue
            image = item.get("image") or {}
            width = _dimension(image.get("width"))
            height = _dimension(image.get("height"))
            title = item.get("title") or ""
            candidates.append(ImageCandidate(
                url=url,
                score=score_image_url(url, width, height, title),
                title=title,
                context_link=image.get("contextLink") or "",
                width=width,
                height=height,
            ))

        # Stable sort keeps the search engine's order among equal scores
        candidates.sort(key=lambda c: c.score, reverse=True)
        logger.debug(f"Image search returned {len(candidates)} usable candidates")
        return candidates

    async def query_backend_for_url(self, brand: str, name: str) -> Optional[str]:
        """Ask the inference backend for a bare image URL."""
        if self.backend is None:
            return None
        prompt = URL_ONLY_PROMPT.format(brand=brand, name=name)
        try:
            url, _ = await self.backend.run_with_fallback(prompt, parse_url_answer)
        except RecognitionError as e:
            logger.warning(f"Image URL query failed: {e}")
            return None
        return url

    async def probe(self, url: str) -> bool:
        """True if url downloads and decodes as an image within the timeout."""
        if is_rejected_url(url):
            return False
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.probe_timeout,
                follow_redirects=True,
            ) as client:
                response = await asyncio.wait_for(client.get(url), timeout=self.probe_timeout)
            if response.status_code != 200:
                logger.debug(f"Image probe got HTTP {response.status_code}: {url}")
                return False
            with Image.open(io.BytesIO(response.content)) as img:
                img.verify()
            return True
        except (
            asyncio.TimeoutError,
            httpx.HTTPError,
            httpx.InvalidURL,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,  # malformed host, including IDNA errors
        ) as e:
            logger.debug(f"Image probe failed for {url!r}: {type(e).__name__}")
            return False
