"""Product recommendations from interpretation text.

Scores each catalog product by how often its tags appear as whole words in
the text. Ties keep catalog order; with no matches at all the first products
in the catalog are returned as staff picks.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

DATA_PATH = Path(__file__).resolve().parent / "data" / "products.json"

DEFAULT_LIMIT = 2


class Product(BaseModel):
    id: str
    name: str
    price: float
    description: str = ""
    image: str = ""
    tags: List[str] = Field(default_factory=list)


_PRODUCTS: Optional[Tuple[Product, ...]] = None


def get_products() -> Tuple[Product, ...]:
    global _PRODUCTS
    if _PRODUCTS is None:
        data = json.loads(DATA_PATH.read_text(encoding="utf-8"))
        _PRODUCTS = tuple(Product.model_validate(p) for p in data)
    return _PRODUCTS


def score_product(product: Product, text: str) -> int:
    lowered = text.lower()
    return sum(len(re.findall(rf"\b{re.escape(tag.lower())}\b", lowered)) for tag in product.tags)


def get_recommendations(text: str, limit: int = DEFAULT_LIMIT) -> List[Product]:
    products = get_products()
    if limit <= 0:
        return []
    scored = [(score_product(p, text or ""), p) for p in products]
    # sorted() is stable, so equal scores stay in catalog order
    matched = [p for score, p in sorted(scored, key=lambda item: -item[0]) if score > 0]
    if not matched:
        return list(products[:limit])
    return matched[:limit]
