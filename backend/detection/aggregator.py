"""
Detection Aggregator — raw provider detections → structured shelf result.

Pure and deterministic: identical inputs always produce an identical
DetectionResult (matches follow candidate order, categories are sorted).

Steps:
  1. Keep detections with confidence >= threshold.
  2. Attribute each kept detection to a candidate SKU by label (SKU id first,
     then case/whitespace-insensitive SKU name). Every attributed detection
     is one facing.
  3. total_shelf_area = area of ALL kept detections;
     trained_products_area = area of attributed detections.
  4. Repeat the area ratio per SKU category.
  5. One-line summary for display.

Threshold range validation happens at the configuration boundary
(detection.confidence), not here.
"""

from dataclasses import asdict, dataclass
from typing import Any

UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@dataclass(frozen=True)
class RawDetection:
    label: str
    confidence: float
    bounding_box: BoundingBox


@dataclass(frozen=True)
class CandidateSku:
    id: str
    name: str
    category: str | None = None


@dataclass(frozen=True)
class SkuMatch:
    sku_id: str
    sku_name: str
    is_available: bool
    facings: int
    confidence: float
    bounding_box: BoundingBox
    category: str | None = None


@dataclass(frozen=True)
class MissingSku:
    sku_id: str
    sku_name: str


@dataclass(frozen=True)
class CategoryShare:
    category: str
    trained_products_area: float
    percentage: float
    sku_count: int


@dataclass(frozen=True)
class ShareOfShelf:
    total_shelf_area: float
    trained_products_area: float
    percentage: float
    by_category: tuple[CategoryShare, ...] = ()


@dataclass(frozen=True)
class DetectionResult:
    matches: tuple[SkuMatch, ...]
    missing_skus: tuple[MissingSku, ...]
    share_of_shelf: ShareOfShelf
    total_facings: int
    summary: str
    confidence_threshold: float
    detections_considered: int = 0
    detections_filtered_out: int = 0

    @property
    def matched_detection_count(self) -> int:
        return self.total_facings

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_label(label: str) -> str:
    return " ".join(str(label).split()).casefold()


def share_percentage(part: float, total: float) -> float:
    """part / total * 100, clamped to [0, 100]; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(min(max(part / total * 100, 0.0), 100.0), 2)


def _candidate_index(candidates: list[CandidateSku]) -> tuple[dict[str, int], dict[str, int]]:
    by_id: dict[str, int] = {}
    by_name: dict[str, int] = {}
    for idx, sku in enumerate(candidates):
        by_id.setdefault(str(sku.id), idx)
        by_name.setdefault(normalize_label(sku.name), idx)
    return by_id, by_name


def _attribute(detection: RawDetection, by_id: dict[str, int], by_name: dict[str, int]) -> int | None:
    label = str(detection.label)
    if label in by_id:
        return by_id[label]
    return by_name.get(normalize_label(label))


def _summary(matched: int, missing: int, facings: int, percentage: float) -> str:
    total = matched + missing
    return (
        f"{matched} of {total} SKUs detected ({missing} missing), "
        f"{facings} facings, {percentage:.1f}% share of shelf"
    )


def aggregate(
    raw_detections: list[RawDetection],
    candidate_skus: list[CandidateSku],
    confidence_threshold: float,
) -> DetectionResult:
    """Aggregate raw provider detections against the tenant's candidate SKUs."""
    kept = [d for d in raw_detections if d.confidence >= confidence_threshold]
    total_area = sum(d.bounding_box.area for d in kept)

    by_id, by_name = _candidate_index(candidate_skus)
    attributed: dict[int, list[RawDetection]] = {}
    for detection in kept:
        idx = _attribute(detection, by_id, by_name)
        if idx is not None:
            attributed.setdefault(idx, []).append(detection)

    matches: list[SkuMatch] = []
    missing: list[MissingSku] = []
    category_areas: dict[str, float] = {}
    category_counts: dict[str, int] = {}
    trained_area = 0.0

    for idx, sku in enumerate(candidate_skus):
        hits = attributed.get(idx)
        if not hits:
            missing.append(MissingSku(sku_id=str(sku.id), sku_name=sku.name))
            continue

        # First highest-confidence hit wins, input order breaks ties
        best = max(hits, key=lambda d: d.confidence)
        area = sum(d.bounding_box.area for d in hits)
        trained_area += area

        category = sku.category or UNCATEGORIZED
        category_areas[category] = category_areas.get(category, 0.0) + area
        category_counts[category] = category_counts.get(category, 0) + 1

        matches.append(
            SkuMatch(
                sku_id=str(sku.id),
                sku_name=sku.name,
                is_available=True,
                facings=len(hits),
                confidence=best.confidence,
                bounding_box=best.bounding_box,
                category=sku.category,
            )
        )

    by_category = tuple(
        CategoryShare(
            category=category,
            trained_products_area=category_areas[category],
            percentage=share_percentage(category_areas[category], total_area),
            sku_count=category_counts[category],
        )
        for category in sorted(category_areas)
    )
    percentage = share_percentage(trained_area, total_area)
    total_facings = sum(m.facings for m in matches)

    return DetectionResult(
        matches=tuple(matches),
        missing_skus=tuple(missing),
        share_of_shelf=ShareOfShelf(
            total_shelf_area=total_area,
            trained_products_area=trained_area,
            percentage=percentage,
            by_category=by_category,
        ),
        total_facings=total_facings,
        summary=_summary(len(matches), len(missing), total_facings, percentage),
        confidence_threshold=confidence_threshold,
        detections_considered=len(raw_detections),
        detections_filtered_out=len(raw_detections) - len(kept),
    )
