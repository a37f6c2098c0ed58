"""
Name normalization shared by the cache, the matcher and the stats tracker.

normalize_name("Romeo y Julieta") -> "romeoyjulieta"
normalize_name("Partagás  Serie D No.4") -> "partagasseriedno4"

Also builds the keyword list stored alongside each catalog entry.
"""

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_name(value: str) -> str:
    """Lowercase, fold accents, and drop everything that is not a-z or 0-9."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value.strip().lower())
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", folded)


def catalog_key(brand: str, name: str) -> str:
    """Key addressing a (brand, name) pair in the cache and stats table."""
    return f"{normalize_name(brand)}_{normalize_name(name)}"


def generate_search_keywords(brand: str, name: str) -> list[str]:
    """
    Keywords used for "contains any" fuzzy lookups, most specific first.

    Full normalized brand and name, both concatenations, then every
    word of brand and name longer than two characters before normalization.
    """
    normalized_brand = normalize_name(brand)
    normalized_name = normalize_name(name)

    candidates = [
        normalized_brand,
        normalized_name,
        f"{normalized_brand}{normalized_name}",
        f"{normalized_brand}-{normalized_name}",
    ]
    for text in (brand or "", name or ""):
        for word in text.lower().split():
            if len(word) > 2:
                candidates.append(normalize_name(word))

    keywords: list[str] = []
    seen = set()
    for keyword in candidates:
        if keyword and keyword != "-" and keyword not in seen:
            seen.add(keyword)
            keywords.append(keyword)
    return keywords
