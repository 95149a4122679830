"""
Bar menu: standard servings with ABV (midpoint of typical ranges).
Serving sizes: beer 355 mL, wine 150 mL, fortified wine / sake 90 mL, spirit 44 mL.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

CATEGORIES = ["Beer", "Wine", "Spirit", "Other"]


@dataclass(frozen=True)
class MenuItem:
    id: str
    name: str
    emoji: str
    category: str
    volume_ml: float
    abv: float  # percent, e.g. 4.5
    description: str


def _m(bid: str, name: str, emoji: str, cat: str, ml: float, abv: float, desc: str) -> MenuItem:
    return MenuItem(id=bid, name=name, emoji=emoji, category=cat, volume_ml=ml, abv=abv, description=desc)


MENU: List[MenuItem] = [
    # Beer
    _m("beer-lager", "Beer (Lager)", "🍺", "Beer", 355, 3.6, "12 oz · 3.2–4.0% ABV"),
    _m("ale", "Ale", "🍺", "Beer", 355, 4.5, "12 oz · 4.5% ABV"),
    _m("porter", "Porter", "🍺", "Beer", 355, 6.0, "12 oz · 6.0% ABV"),
    _m("stout", "Stout", "🍺", "Beer", 355, 7.0, "12 oz · 6.0–8.0% ABV"),
    _m("malt-liquor", "Malt Liquor", "🍺", "Beer", 355, 5.1, "12 oz · 3.2–7.0% ABV"),
    # Wine
    _m("table-wine", "Table Wine", "🍷", "Wine", 150, 10.5, "5 oz · 7.1–14.0% ABV"),
    _m("sparkling-wine", "Sparkling Wine", "🥂", "Wine", 150, 11.0, "5 oz · 8.0–14.0% ABV"),
    _m("fortified-wine", "Fortified Wine", "🍷", "Wine", 90, 19.0, "3 oz · 14.0–24.0% ABV"),
    _m("aromatized-wine", "Aromatized Wine", "🍷", "Wine", 90, 17.75, "3 oz · 15.5–20.0% ABV"),
    # Spirits (1.5 oz)
    _m("brandy", "Brandy", "🥃", "Spirit", 44, 41.5, "1.5 oz · 40.0–43.0% ABV"),
    _m("whiskey", "Whiskey", "🥃", "Spirit", 44, 57.5, "1.5 oz · 40.0–75.0% ABV"),
    _m("vodka", "Vodka", "🍸", "Spirit", 44, 45.0, "1.5 oz · 40.0–50.0% ABV"),
    _m("gin", "Gin", "🍸", "Spirit", 44, 44.25, "1.5 oz · 40.0–48.5% ABV"),
    _m("rum", "Rum", "🍹", "Spirit", 44, 67.5, "1.5 oz · 40.0–95.0% ABV"),
    _m("tequila", "Tequila", "🌵", "Spirit", 44, 47.75, "1.5 oz · 45.0–50.5% ABV"),
    _m("aquavit", "Aquavit", "🥃", "Spirit", 44, 40.0, "1.5 oz · 35.0–45.0% ABV"),
    _m("okolehao", "Okolehao", "🥃", "Spirit", 44, 40.0, "1.5 oz · 40.0% ABV"),
    # Other
    _m("sake", "Sake", "🍶", "Other", 90, 15.0, "3 oz · 14.0–16.0% ABV"),
]

_MENU_BY_ID: Dict[str, MenuItem] = {m.id: m for m in MENU}


def get_item(menu_id: str) -> Optional[MenuItem]:
    return _MENU_BY_ID.get(menu_id)


def _as_dict(m: MenuItem) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "emoji": m.emoji,
        "category": m.category,
        "volume_ml": m.volume_ml,
        "abv": m.abv,
        "description": m.description,
    }


def list_by_category() -> Dict[str, List[dict]]:
    """Group menu by category, in menu order, for the bartender panel."""
    out: Dict[str, List[dict]] = {cat: [] for cat in CATEGORIES}
    for m in MENU:
        out.setdefault(m.category, []).append(_as_dict(m))
    return out


def list_all_flat() -> List[dict]:
    return [_as_dict(m) for m in MENU]
