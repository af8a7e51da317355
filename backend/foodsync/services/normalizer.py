"""
Normalization of Open Food Facts payloads.

OFF data is crowd-sourced and the set of fields varies from product to
product, so every field is read through an explicit ordered list of
candidate keys. Nothing in this module raises on malformed input: search
payloads degrade to an empty list and single products to None.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

UNKNOWN_PRODUCT_NAME = "Unknown product"

NAME_FALLBACK_KEYS = ['product_name_en', 'product_name', 'generic_name']
SEARCH_IMAGE_KEYS = ['image_front_small_url', 'image_small_url', 'image_front_url', 'image_url']
PRODUCT_IMAGE_KEYS = ['image_front_url', 'image_url', 'image_front_small_url', 'image_small_url']
CATEGORY_KEYS = ['categories_tags', 'categories']
ALLERGEN_KEYS = ['allergens_tags', 'allergens']
LABEL_KEYS = ['labels_tags', 'labels']

# nutrition field -> candidate nutriment keys, first usable value wins
NUTRIMENT_KEYS = {
    'kcal': ['energy-kcal_100g', 'energy_kcal_100g'],
    'protein_g': ['proteins_100g'],
    'fat_g': ['fat_100g'],
    'carbs_g': ['carbohydrates_100g'],
    'sugar_g': ['sugars_100g'],
    'fiber_g': ['fiber_100g'],
    'salt_g': ['salt_100g'],
}


@dataclass
class NutritionPer100g:
    """Macros per 100 g. None means unknown, not zero."""
    kcal: Optional[float] = None
    protein_g: Optional[float] = None
    fat_g: Optional[float] = None
    carbs_g: Optional[float] = None
    sugar_g: Optional[float] = None
    fiber_g: Optional[float] = None
    salt_g: Optional[float] = None


@dataclass
class CanonicalProductItem:
    """Normalized upstream product."""
    barcode: str
    name: str
    name_en: Optional[str] = None
    brand: Optional[str] = None
    quantity: Optional[str] = None
    nutriscore: Optional[str] = None
    nova: Optional[int] = None
    image_url: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    allergens: List[str] = field(default_factory=list)
    # only filled by single product lookups
    labels: List[str] = field(default_factory=list)
    serving_size: Optional[str] = None
    nutrition_per_100g: NutritionPer100g = field(default_factory=NutritionPer100g)
    nutriments_raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CanonicalProductItem':
        """Rebuild an item from its to_dict() form (e.g. a cached payload)."""
        nutrition = data.get('nutrition_per_100g') or {}
        return cls(
            barcode=str(data.get('barcode') or ''),
            name=data.get('name') or UNKNOWN_PRODUCT_NAME,
            name_en=data.get('name_en'),
            brand=data.get('brand'),
            quantity=data.get('quantity'),
            nutriscore=data.get('nutriscore'),
            nova=data.get('nova'),
            image_url=data.get('image_url'),
            categories=list(data.get('categories') or []),
            allergens=list(data.get('allergens') or []),
            labels=list(data.get('labels') or []),
            serving_size=data.get('serving_size'),
            nutrition_per_100g=parse_nutrition(nutrition, NUTRITION_FIELD_KEYS),
            nutriments_raw=dict(data.get('nutriments_raw') or {}),
        )


# Identity mapping used when re-reading an already normalized nutrition dict
NUTRITION_FIELD_KEYS = {name: [name] for name in NUTRIMENT_KEYS}


def as_string(value: Any) -> Optional[str]:
    """Trimmed non-empty string, else None."""
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def as_number(value: Any) -> Optional[float]:
    """Permissive numeric parse. Non-finite, negative or unparsable values give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(',', '.')
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def as_int(value: Any) -> Optional[int]:
    number = as_number(value)
    if number is None:
        return None
    return int(number)


def split_tags(value: Any) -> List[str]:
    """Accept a comma-delimited string or a list; return non-empty trimmed strings."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        items = [item for item in value if item is not None and not isinstance(item, (dict, list))]
        return [str(item).strip() for item in items if str(item).strip()]
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return []


def first_string(product: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    """First non-empty string among keys, in order."""
    for key in keys:
        value = as_string(product.get(key))
        if value:
            return value
    return None


def first_number(data: Dict[str, Any], keys: Iterable[str]) -> Optional[float]:
    for key in keys:
        value = as_number(data.get(key))
        if value is not None:
            return value
    return None


def first_tags(product: Dict[str, Any], keys: Iterable[str]) -> List[str]:
    """Tags from the first key holding a non-empty value."""
    for key in keys:
        tags = split_tags(product.get(key))
        if tags:
            return tags
    return []


def name_keys(locale: str) -> List[str]:
    """Name lookup order: product_name_<locale>, English, generic."""
    keys = list(NAME_FALLBACK_KEYS)
    localized = f'product_name_{locale}'
    if locale and localized not in keys:
        keys.insert(0, localized)
    return keys


def resolve_name(product: Dict[str, Any], locale: str) -> str:
    return first_string(product, name_keys(locale)) or UNKNOWN_PRODUCT_NAME


def parse_nutrition(nutriments: Any, key_map: Dict[str, List[str]] = None) -> NutritionPer100g:
    data = nutriments if isinstance(nutriments, dict) else {}
    key_map = key_map or NUTRIMENT_KEYS
    return NutritionPer100g(**{
        field_name: first_number(data, keys) for field_name, keys in key_map.items()
    })


def _build_item(product: Dict[str, Any], barcode: str, locale: str,
                image_keys: List[str]) -> CanonicalProductItem:
    nutriments = product.get('nutriments')
    return CanonicalProductItem(
        barcode=barcode,
        name=resolve_name(product, locale),
        name_en=as_string(product.get('product_name_en')),
        brand=as_string(product.get('brands')),
        quantity=as_string(product.get('quantity')),
        nutriscore=as_string(product.get('nutriscore_grade')),
        nova=as_int(product.get('nova_group')),
        image_url=first_string(product, image_keys),
        categories=first_tags(product, CATEGORY_KEYS),
        allergens=first_tags(product, ALLERGEN_KEYS),
        nutrition_per_100g=parse_nutrition(nutriments),
        nutriments_raw=dict(nutriments) if isinstance(nutriments, dict) else {},
    )


def _barcode_of(product: Dict[str, Any]) -> Optional[str]:
    code = product.get('code')
    if isinstance(code, (int, float)) and not isinstance(code, bool):
        code = str(int(code)) if float(code).is_integer() else None
    return as_string(code)


def normalize_search_results(payload: Any, locale: str = 'en') -> List[CanonicalProductItem]:
    """Normalize a search payload. Products without a code are dropped."""
    if not isinstance(payload, dict):
        return []
    products = payload.get('products')
    if not isinstance(products, list):
        return []

    items = []
    for product in products:
        if not isinstance(product, dict):
            continue
        barcode = _barcode_of(product)
        if not barcode:
            continue
        items.append(_build_item(product, barcode, locale, SEARCH_IMAGE_KEYS))
    return items


def normalize_single_product(payload: Any, barcode: str,
                             locale: str = 'en') -> Optional[CanonicalProductItem]:
    """Normalize a product lookup payload, None when the product is absent."""
    if not isinstance(payload, dict):
        return None
    product = payload.get('product')
    if not isinstance(product, dict) or not product:
        return None
    item = _build_item(product, barcode, locale, PRODUCT_IMAGE_KEYS)
    item.labels = first_tags(product, LABEL_KEYS)
    item.serving_size = as_string(product.get('serving_size'))
    return item
