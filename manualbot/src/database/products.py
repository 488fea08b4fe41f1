"""
manualbot - Product Catalog
=============================
Read-only product reference data, loaded once from ``products.json``.

The file is a JSON array of PascalCase records::

    [{"ProductId": 1, "CategoryId": 4, "Brand": "Acme", "Model": "X1",
      "Description": "...", "Price": 99.5}, ...]
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic.alias_generators import to_pascal

from manualbot.config.settings import settings
from manualbot.src.utils.logger import get_logger

logger = get_logger(__name__)


class Product(BaseModel):
    """A catalog entry.  Frozen: sessions share instances but never mutate them."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)

    product_id: int
    category_id: int
    brand: str
    model: str
    description: str
    price: float


_PRODUCT_LIST = TypeAdapter(list[Product])


def load_products(path: Path | None = None) -> list[Product]:
    """
    Parse the product catalog.

    Raises
    ------
    FileNotFoundError
        If the catalog file is missing.
    pydantic.ValidationError
        If a record does not match ``Product``.
    """
    catalog_path = Path(path or settings.PRODUCTS_FILE)
    products = _PRODUCT_LIST.validate_json(catalog_path.read_bytes())
    logger.info("Loaded %d product(s) from %s", len(products), catalog_path)
    return products


def find_product(products: list[Product], product_id: int) -> Product | None:
    """Return the first product with *product_id*, or ``None``."""
    return next((p for p in products if p.product_id == product_id), None)
