import re
import unicodedata
from typing import Iterable, Optional


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics removed and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by product and size detection.
    Failure Modes: Returns an empty string when input is falsy; regex may over-strip
        non-ASCII symbols, which is intended for matching.
    If Removed: "pequeño" and "pequeno" stop matching the same size and product
        keywords written with accents are missed.
    Testing Notes: Validate Spanish text is normalized (e.g., "Botiquín" -> "botiquin").
    """
    # Normalize to lowercase and strip diacritics for consistent matching.
    if not text:
        return ""
    lowered = text.lower()
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s\-_/._]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def find_keyword(text: str, keywords: Iterable[str]) -> Optional[str]:
    """Purpose: Return the first keyword contained in text after normalization.
    Inputs/Outputs: Inputs are raw text and candidate keywords; output is the matching
        keyword as given, or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses normalize_text on both sides.
    Failure Modes: Substring matching means "kit" also matches "kits"; callers order
        keywords accordingly.
    If Removed: Routing between product and chat requests has no matcher.
    Testing Notes: Check accent-insensitive hits and keyword order precedence.
    """
    # Compare normalized forms so accents and case never matter.
    normalized = normalize_text(text)
    if not normalized:
        return None
    for keyword in keywords:
        if normalize_text(keyword) in normalized:
            return keyword
    return None
