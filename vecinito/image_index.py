from __future__ import annotations

"""Product image lookup over the public image tree.

Layout on disk::

    <root>/<category>/<size>/<file>     size-keyed listing
    <root>/<category>/**/<file>         random selection pool

Nothing is cached: every call rescans the directories, so images dropped into
the tree show up on the next request.
"""

import logging
import random
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

from .utils import find_keyword, normalize_text

logger = logging.getLogger("vecinito.images")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
PRODUCT_CATEGORY = "productos"


class Size(str, Enum):
    """Product sizes; the value is the folder name under the category."""
    SMALL = "pequeño"
    MEDIUM = "mediano"
    LARGE = "grande"


# Order matters: the first keyword found in a prompt wins.
SIZE_KEYWORDS: Dict[str, Size] = {
    "pequeño": Size.SMALL,
    "pequeno": Size.SMALL,
    "small": Size.SMALL,
    "mediano": Size.MEDIUM,
    "medium": Size.MEDIUM,
    "grande": Size.LARGE,
    "large": Size.LARGE,
}

_SIZE_ALIASES: Dict[str, Size] = {normalize_text(key): size for key, size in SIZE_KEYWORDS.items()}


def parse_size(value: str) -> Optional[Size]:
    """Purpose: Map a single size keyword (e.g. a URL segment) to a Size.
    Inputs/Outputs: Input is a raw string; output is a Size or None if unknown.
    Side Effects / State: None.
    Dependencies: Uses normalize_text and the SIZE_KEYWORDS aliases.
    Failure Modes: Unknown or empty values return None.
    If Removed: /imagenes/{size} cannot validate its path parameter.
    Testing Notes: "pequeno", "PEQUEÑO" and "small" all map to Size.SMALL.
    """
    # Exact match against the normalized alias table.
    return _SIZE_ALIASES.get(normalize_text(value or ""))


def detect_size(prompt: str) -> Optional[Size]:
    """Return the first size keyword mentioned anywhere in a prompt."""
    keyword = find_keyword(prompt, SIZE_KEYWORDS)
    return SIZE_KEYWORDS[keyword] if keyword else None


class ImageIndex:
    """Filesystem-backed listing of product images as public URLs."""

    def __init__(self, root_dir: Path, url_prefix: str = "/imagenes") -> None:
        """Purpose: Configure the index with the image root and its public URL prefix.
        Inputs/Outputs: Inputs are the root directory and URL prefix; no return value.
        Side Effects / State: Stores configuration only; no filesystem access.
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; missing directories are handled per call.
        If Removed: Product routes and image endpoints have no image source.
        Testing Notes: Point at a tmp_path tree and list images.
        """
        self._root = Path(root_dir)
        self._prefix = "/" + url_prefix.strip("/") if url_prefix.strip("/") else ""

    @property
    def root(self) -> Path:
        return self._root

    def list_images(self, category: str, size: Optional[Size] = None) -> List[str]:
        """Purpose: List images of one size folder, or of all size folders combined.
        Inputs/Outputs: Inputs are a category and optional Size; output is a list of URLs.
        Side Effects / State: Reads directories; logs missing folders.
        Dependencies: Uses _scan_dir without recursion.
        Failure Modes: Missing/unreadable folders contribute zero images.
        If Removed: /imagenes endpoints and product chat replies return nothing.
        Testing Notes: With no size, results follow pequeño, mediano, grande order.
        """
        # Scan only the size subfolders, never the category root itself.
        sizes = [size] if size else list(Size)
        images: List[str] = []
        for entry in sizes:
            images.extend(self._scan_dir(self._root / category / entry.value, recursive=False))
        return images

    def walk_images(self, category: str) -> List[str]:
        """Return every image under a category, recursing into subfolders."""
        return self._scan_dir(self._root / category, recursive=True)

    def pick_random_images(
        self,
        shown: Set[str],
        category: str,
        count: int,
        rng: Optional[random.Random] = None,
    ) -> List[str]:
        """Purpose: Pick random images a caller has not seen in the current cycle.
        Inputs/Outputs: Inputs are the caller's shown-set, category, count, and an
            optional RNG; output is up to `count` distinct image URLs.
        Side Effects / State: Mutates `shown`. When fewer than `count` unseen images
            remain, the leftovers are taken first, `shown` is cleared, and the rest is
            drawn from a fresh cycle; `shown` then holds only the fresh-cycle picks.
            The leftovers are not recorded in the new cycle, so the next call can
            return some of them again right away.
        Dependencies: Uses walk_images and random.sample.
        Failure Modes: Empty pool returns []; count above the pool size is capped.
        If Removed: /api/imagenes and degraded chat replies cannot suggest products.
        Testing Notes: Pool of 5, count 3: no repeats until all 5 have been returned;
            the third call repeats at least one leftover from the second.
        """
        # Draw unseen images first and roll over into a new cycle when exhausted.
        rng = rng or random
        pool = self.walk_images(category)
        if count <= 0 or not pool:
            return []
        count = min(count, len(pool))
        unseen = [image for image in pool if image not in shown]
        if len(unseen) >= count:
            picked = rng.sample(unseen, count)
            shown.update(picked)
            return picked

        leftovers = rng.sample(unseen, len(unseen))
        shown.clear()
        fresh_pool = [image for image in pool if image not in leftovers]
        fresh = rng.sample(fresh_pool, count - len(leftovers))
        shown.update(fresh)
        logger.debug("category=%s shown-set reset pool=%s", category, len(pool))
        return leftovers + fresh

    def _scan_dir(self, directory: Path, recursive: bool) -> List[str]:
        """Purpose: Collect image files in a directory as public URLs.
        Inputs/Outputs: Inputs are a directory and recursion flag; output is URL list.
        Side Effects / State: Reads the filesystem; logs a warning for missing folders.
        Dependencies: Uses IMAGE_EXTENSIONS and _to_url.
        Failure Modes: OSError while listing degrades to the files read so far.
        If Removed: All listing helpers lose their filesystem access.
        Testing Notes: Uppercase extensions are accepted; .txt files are ignored.
        """
        # Treat absent folders as empty rather than failing the request.
        if not directory.is_dir():
            logger.warning("missing image folder: %s", directory)
            return []
        pattern = "**/*" if recursive else "*"
        images: List[str] = []
        try:
            for path in sorted(directory.glob(pattern)):
                if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
                    images.append(self._to_url(path))
        except OSError as exc:
            logger.warning("failed to scan image folder %s: %s", directory, exc)
        return images

    def _to_url(self, path: Path) -> str:
        relative = path.relative_to(self._root).as_posix()
        return f"{self._prefix}/{relative}"
