# src/com/lingenhag/pricetrack/features/prices/application/catalog.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from com.lingenhag.pricetrack.domain.errors import UnknownItem
from com.lingenhag.pricetrack.domain.models import SourceKind, TrackedItem
from com.lingenhag.pricetrack.platform.config.settings import Settings

_LOG = logging.getLogger(__name__)

_AUCTION_GEM_CATEGORY = 210000
_REFINE_OPTION = 7


def _refine(second: int, min_value: int, max_value: Optional[int]) -> Dict[str, Any]:
    return {"FirstOption": _REFINE_OPTION, "SecondOption": second, "MinValue": min_value, "MaxValue": max_value}


def _ancient_accessory(category: int, options: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "search_name": "",
        "category_code": category,
        "filters": {
            "ItemGrade": "고대",
            "ItemTier": 4,
            "ItemGradeQuality": 70,
            "ItemUpgradeLevel": 3,
            "EtcOptions": options,
        },
    }


DEFAULT_ITEMS: Sequence[TrackedItem] = (
    # Markt (Aggregated)
    TrackedItem("67400003", "질서의 젬 : 안정", SourceKind.AGGREGATED),
    TrackedItem("67400103", "질서의 젬 : 견고", SourceKind.AGGREGATED),
    TrackedItem("6861012", "아비도스 융화 재료", SourceKind.AGGREGATED, price_decimals=1),
    # Auktionshaus: Edelsteine (RawSample)
    TrackedItem(
        "auction_gem_fear_8",
        "8레벨 겁화의 보석",
        SourceKind.RAW_SAMPLE,
        {"search_name": "8레벨 겁화", "category_code": _AUCTION_GEM_CATEGORY},
    ),
    TrackedItem(
        "auction_gem_fear_10",
        "10레벨 겁화의 보석",
        SourceKind.RAW_SAMPLE,
        {"search_name": "10레벨 겁화", "category_code": _AUCTION_GEM_CATEGORY},
    ),
    TrackedItem(
        "auction_gem_flame_10",
        "10레벨 작열의 보석",
        SourceKind.RAW_SAMPLE,
        {"search_name": "10레벨 작열", "category_code": _AUCTION_GEM_CATEGORY},
    ),
    # Auktionshaus: Accessoires mit Veredelungs-Filter (RawSample)
    TrackedItem(
        "auction_necklace_ancient_refine3",
        "고대 목걸이 적주피(상), 추피(중)",
        SourceKind.RAW_SAMPLE,
        _ancient_accessory(200010, [_refine(41, 160, 260), _refine(42, 200, 200)]),
    ),
    TrackedItem(
        "auction_ring_ancient_refine3",
        "고대 반지 치피(상), 치적(중)",
        SourceKind.RAW_SAMPLE,
        _ancient_accessory(200030, [_refine(50, 400, 400), _refine(49, 95, 155)]),
    ),
    TrackedItem(
        "auction_earring_ancient_refine3",
        "고대 귀걸이 공%(상), 무공%(중)",
        SourceKind.RAW_SAMPLE,
        _ancient_accessory(200020, [_refine(45, 155, 155), _refine(46, 180, 300)]),
    ),
)


def item_from_mapping(raw: Mapping[str, Any]) -> TrackedItem:
    """Baut ein TrackedItem aus einem config.yaml-Eintrag."""
    item_id = str(raw.get("id") or "").strip()
    kind_raw = str(raw.get("source_kind") or raw.get("type") or "").strip().lower()
    # "market"/"auction" sind die Upstream-Bezeichnungen
    aliases = {"market": SourceKind.AGGREGATED, "auction": SourceKind.RAW_SAMPLE}
    try:
        kind = aliases.get(kind_raw) or SourceKind(kind_raw)
    except ValueError as e:
        raise ValueError(f"Ungültige source_kind '{kind_raw}' für Item '{item_id}'") from e
    return TrackedItem(
        id=item_id,
        display_name=str(raw.get("display_name") or raw.get("name") or item_id),
        source_kind=kind,
        fetch_params=dict(raw.get("fetch_params") or {}),
        price_decimals=int(raw.get("price_decimals", 0)),
    )


@dataclass(frozen=True)
class ItemCatalog:
    items: Sequence[TrackedItem]

    def __post_init__(self):
        seen = set()
        for item in self.items:
            if item.id in seen:
                raise ValueError(f"Doppelte Item-ID im Katalog: {item.id}")
            seen.add(item.id)

    def __iter__(self) -> Iterator[TrackedItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item_id: object) -> bool:
        return any(i.id == item_id for i in self.items)

    def get(self, item_id: str) -> TrackedItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise UnknownItem(f"Item '{item_id}' ist nicht im Katalog", item_id=item_id)

    def ids(self) -> List[str]:
        return [i.id for i in self.items]

    def select(
            self, item_ids: Optional[Iterable[str]] = None
    ) -> Tuple[List[TrackedItem], List[UnknownItem]]:
        """
        Teilmenge in Katalog-Reihenfolge; None = alle.
        Unbekannte IDs brechen die Auswahl nicht ab, sondern kommen als UnknownItem-Fehler
        zurück, damit ein Batch die übrigen Items trotzdem verarbeitet.
        """
        if item_ids is None:
            return list(self.items), []
        wanted = list(dict.fromkeys(item_ids))
        known = set(self.ids())
        unknown = [
            UnknownItem(f"Item '{item_id}' ist nicht im Katalog", item_id=item_id)
            for item_id in wanted
            if item_id not in known
        ]
        return [i for i in self.items if i.id in wanted], unknown

    @classmethod
    def default(cls) -> "ItemCatalog":
        return cls(items=tuple(DEFAULT_ITEMS))

    @classmethod
    def from_settings(cls, config: Settings) -> "ItemCatalog":
        raw_items = config.get("catalog", "items", None)
        if not raw_items:
            return cls.default()
        items = tuple(item_from_mapping(r) for r in raw_items)
        _LOG.info("Katalog aus Konfiguration geladen: %d Items", len(items))
        return cls(items=items)
