"""Visual similarity matching for element recovery.

Fingerprints combine a perceptual hash of the element's rendered image with
its bounding box, a coarse feature vector and its parent/sibling context.
"""

import io
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import imagehash
from loguru import logger
from PIL import Image, ImageStat

from selfheal.constants import VisualMatching
from selfheal.models.element import BoundingBox, NodeDescriptor
from selfheal.models.fingerprint import SurroundingContext, VisualFeatures, VisualFingerprint


@dataclass(frozen=True)
class VisualMatch:
    """Candidate element scored against a target fingerprint."""

    element: Any
    similarity: float
    fingerprint: VisualFingerprint


def hash_similarity(hash1: str, hash2: str) -> float:
    """
    Hamming similarity of two hex perceptual hashes.

    Returns:
        ``1 - distance / bits``; 0.0 when either hash is missing, the lengths
        differ or a hash is not valid hex
    """
    if not hash1 or not hash2 or len(hash1) != len(hash2):
        return 0.0
    try:
        h1 = imagehash.hex_to_hash(hash1)
        h2 = imagehash.hex_to_hash(hash2)
    except ValueError:
        return 0.0
    bits = h1.hash.size
    return 1.0 - (h1 - h2) / bits if bits else 0.0


def bounding_box_similarity(box1: Optional[BoundingBox], box2: Optional[BoundingBox]) -> float:
    """
    Mean of intersection-over-union and size ratio.

    Disjoint boxes score 0.0 regardless of their sizes.
    """
    if box1 is None or box2 is None:
        return 0.0
    overlap = box1.intersection_area(box2)
    union = box1.area + box2.area - overlap
    if union <= 0:
        return 1.0
    if overlap <= 0:
        return 0.0
    iou = overlap / union
    size_ratio = min(box1.area, box2.area) / max(box1.area, box2.area)
    return (iou + size_ratio) / 2


def features_similarity(f1: VisualFeatures, f2: VisualFeatures) -> float:
    """Average similarity over the feature dimensions both vectors carry."""
    score = 0.0
    count = 0
    if f1.aspect_ratio and f2.aspect_ratio:
        score += 1 - abs(f1.aspect_ratio - f2.aspect_ratio) / max(f1.aspect_ratio, f2.aspect_ratio)
        count += 1
    if f1.area and f2.area:
        score += min(f1.area, f2.area) / max(f1.area, f2.area)
        count += 1
    if f1.mean_luminance is not None and f2.mean_luminance is not None:
        score += 1 - abs(f1.mean_luminance - f2.mean_luminance)
        count += 1
    return score / count if count else 0.0


def _node_similarity(n1: Optional[NodeDescriptor], n2: Optional[NodeDescriptor]) -> float:
    if n1 is None or n2 is None:
        return 0.0
    score = 1.0 if n1.tag == n2.tag else 0.0
    count = 1
    classes1 = n1.class_name.split()
    classes2 = n2.class_name.split()
    if classes1 and classes2:
        common = [c for c in classes1 if c in classes2]
        score += len(common) / max(len(classes1), len(classes2))
        count += 1
    if n1.id and n2.id:
        score += 1.0 if n1.id == n2.id else 0.0
        count += 1
    return score / count


def _siblings_similarity(s1: Sequence[NodeDescriptor], s2: Sequence[NodeDescriptor]) -> float:
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    matches = sum(1 for a, b in zip(s1, s2) if _node_similarity(a, b) > 0.5)
    return matches / longest


def context_similarity(c1: SurroundingContext, c2: SurroundingContext) -> float:
    """Parent and sibling agreement. Two empty contexts are identical."""
    score = 0.0
    count = 0
    if c1.parent is not None and c2.parent is not None:
        score += _node_similarity(c1.parent, c2.parent)
        count += 1
    score += _siblings_similarity(c1.siblings, c2.siblings)
    count += 1
    return score / count


class VisualSimilarityMatcher:
    """Create visual fingerprints and rank page elements against them."""

    def __init__(
        self,
        threshold: float = VisualMatching.THRESHOLD,
        max_candidates: int = VisualMatching.MAX_CANDIDATES,
        hash_size: int = VisualMatching.HASH_SIZE,
        cache_size: int = VisualMatching.CACHE_SIZE,
        cache_ttl_seconds: float = VisualMatching.CACHE_TTL_SECONDS,
        weights: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize visual similarity matcher.

        Args:
            threshold: Minimum similarity for a candidate to be returned
            max_candidates: Maximum number of candidates returned
            hash_size: Perceptual hash size (bits = hash_size ** 2)
            cache_size: Maximum cached fingerprints
            cache_ttl_seconds: Freshness window of cached fingerprints
            weights: Component weights (hash, bounding_box, features, context)
            clock: Monotonic clock, injectable for tests
        """
        self.threshold = threshold
        self.max_candidates = max_candidates
        self.hash_size = hash_size
        self.cache_size = cache_size
        self.cache_ttl_seconds = cache_ttl_seconds
        self.weights = dict(weights or VisualMatching.WEIGHTS)
        self._clock = clock
        self._cache: "OrderedDict[Tuple[str, str], Tuple[float, VisualFingerprint]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def compute_hash(self, image_bytes: bytes) -> Tuple[str, Optional[float]]:
        """
        Perceptual hash and mean luminance of an encoded image.

        Returns:
            Tuple of (hex pHash, mean luminance in [0, 1]); ``("", None)`` if
            the bytes cannot be decoded
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                phash = imagehash.phash(img, hash_size=self.hash_size)
                luminance = ImageStat.Stat(img.convert("L")).mean[0] / 255.0
            return str(phash), luminance
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to compute visual hash: {e}")
            return "", None

    async def create_fingerprint(
        self, driver: Any, element: Any, selector: Optional[str] = None
    ) -> VisualFingerprint:
        """
        Capture a fingerprint for an element.

        Args:
            driver: ``BrowserDriver`` the element belongs to
            element: Opaque element handle
            selector: When given, the fingerprint is cached under (selector, URL)

        Returns:
            Visual fingerprint

        Raises:
            ValueError: If the element has no bounding box
        """
        box = await driver.bounding_box(element)
        if box is None:
            raise ValueError("Element has no bounding box")

        image_bytes = await driver.screenshot(element)
        phash, luminance = self.compute_hash(image_bytes)
        snapshot = await driver.describe(element)
        page_url = await driver.current_url()

        fingerprint = VisualFingerprint(
            perceptual_hash=phash,
            bounding_box=box,
            features=VisualFeatures(
                width=box.width,
                height=box.height,
                aspect_ratio=box.aspect_ratio,
                area=box.area,
                mean_luminance=luminance,
            ),
            surrounding_context=SurroundingContext(
                parent=snapshot.parent, siblings=snapshot.siblings
            ),
            page_url=page_url,
            viewport=await driver.viewport(),
        )

        if selector:
            self.cache_fingerprint(selector, fingerprint)
        return fingerprint

    def calculate_similarity(self, fp1: VisualFingerprint, fp2: VisualFingerprint) -> float:
        """Weighted blend of hash, box, feature and context similarity."""
        if fp1 is fp2 or fp1 == fp2:
            return 1.0
        breakdown = self.score_breakdown(fp1, fp2)
        total_weight = sum(self.weights.values())
        if total_weight <= 0:
            return 0.0
        score = sum(breakdown[name] * weight for name, weight in self.weights.items())
        return min(1.0, max(0.0, score / total_weight))

    def score_breakdown(self, fp1: VisualFingerprint, fp2: VisualFingerprint) -> Dict[str, float]:
        return {
            "hash": hash_similarity(fp1.perceptual_hash, fp2.perceptual_hash),
            "bounding_box": bounding_box_similarity(fp1.bounding_box, fp2.bounding_box),
            "features": features_similarity(fp1.features, fp2.features),
            "context": context_similarity(fp1.surrounding_context, fp2.surrounding_context),
        }

    async def find_by_similarity(
        self,
        driver: Any,
        target: VisualFingerprint,
        threshold: Optional[float] = None,
        max_candidates: Optional[int] = None,
    ) -> List[VisualMatch]:
        """
        Rank every visible element by similarity to ``target``.

        Elements that cannot be fingerprinted are skipped.

        Returns:
            Matches at or above the threshold, best first, capped
        """
        threshold = self.threshold if threshold is None else threshold
        limit = max_candidates or self.max_candidates

        candidates = await driver.query_all_visible("*")
        matches: List[VisualMatch] = []
        for candidate in candidates:
            try:
                fingerprint = await self.create_fingerprint(driver, candidate)
            except (ValueError, OSError) as e:
                logger.debug(f"Skipping visual candidate: {e}")
                continue
            similarity = self.calculate_similarity(target, fingerprint)
            if similarity >= threshold:
                matches.append(VisualMatch(candidate, similarity, fingerprint))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        logger.debug(
            f"Visual search: {len(matches)} of {len(candidates)} candidates above {threshold}"
        )
        return matches[:limit]

    def cache_fingerprint(self, selector: str, fingerprint: VisualFingerprint) -> None:
        key = (selector, fingerprint.page_url)
        with self._lock:
            self._cache[key] = (self._clock(), fingerprint)
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def get_cached_fingerprint(self, selector: str, page_url: str) -> Optional[VisualFingerprint]:
        """Return a fresh cached fingerprint, dropping it if stale."""
        key = (selector, page_url)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            stored_at, fingerprint = entry
            if self._clock() - stored_at > self.cache_ttl_seconds:
                del self._cache[key]
                self._misses += 1
                return None
            self._hits += 1
            return fingerprint

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cache_size": len(self._cache),
                "max_size": self.cache_size,
                "hits": self._hits,
                "misses": self._misses,
            }
