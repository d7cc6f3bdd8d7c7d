"""
Closed category taxonomy for labeled spans.

Categories are either a parent id (``camera``) or a dotted attribute id
(``camera.movement``). The parent of an attribute is the part before the
first dot. Classifier output and older clients use free-form role names
(``"Camera"``, ``"cameraMove"``, ``"Wardrobe"``); ``resolve_category`` maps
those onto the taxonomy through the legacy alias table.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from spanlight.config.loaders import (
    CategoryDefinition,
    PaletteEntry,
    get_config_version,
    load_taxonomy_v3,
)


@dataclass(frozen=True)
class ParsedCategoryId:
    parent: str
    attribute: str | None

    @property
    def is_parent(self) -> bool:
        return self.attribute is None


@dataclass(frozen=True)
class _TaxonomyIndex:
    version: str
    default_category: str
    parents: tuple[str, ...]
    attributes: tuple[str, ...]
    valid: frozenset[str]
    by_parent: dict[str, CategoryDefinition]
    aliases: dict[str, str]
    folded_aliases: dict[str, str]
    folded_valid: dict[str, str]
    palette: dict[str, PaletteEntry]


@lru_cache(maxsize=4)
def _build_index(config_version: int) -> _TaxonomyIndex:
    taxonomy = load_taxonomy_v3()
    parents = tuple(category.id for category in taxonomy.categories)
    attributes: list[str] = []
    for category in taxonomy.categories:
        attributes.extend(category.attributes.values())
    valid = frozenset(parents) | frozenset(attributes)
    aliases = dict(taxonomy.legacy_aliases)
    return _TaxonomyIndex(
        version=taxonomy.version,
        default_category=taxonomy.default_category,
        parents=parents,
        attributes=tuple(attributes),
        valid=valid,
        by_parent={category.id: category for category in taxonomy.categories},
        aliases=aliases,
        folded_aliases={key.casefold(): value for key, value in aliases.items()},
        folded_valid={value.casefold(): value for value in valid},
        palette=dict(taxonomy.palette),
    )


def _index() -> _TaxonomyIndex:
    return _build_index(get_config_version())


def taxonomy_version() -> str:
    return _index().version


def default_category() -> str:
    return _index().default_category


def legacy_aliases() -> dict[str, str]:
    """The alias table as a plain dict (copy)."""
    return dict(_index().aliases)


def is_valid_category(category_id: str | None) -> bool:
    if not category_id or not isinstance(category_id, str):
        return False
    return category_id in _index().valid


def resolve_category(value: object) -> str | None:
    """Map a taxonomy id or legacy role name onto a taxonomy id.

    Exact alias and id matches win; otherwise the lookup is repeated
    case-insensitively. Returns ``None`` for values that match nothing.
    """
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate:
        return None
    index = _index()
    if candidate in index.aliases:
        return index.aliases[candidate]
    if candidate in index.valid:
        return candidate
    folded = candidate.casefold()
    if folded in index.folded_aliases:
        return index.folded_aliases[folded]
    return index.folded_valid.get(folded)


def normalize_role(value: object) -> str:
    """Resolve ``value`` to a taxonomy id, defaulting unknown values."""
    return resolve_category(value) or _index().default_category


def parse_category_id(category_id: str | None) -> ParsedCategoryId | None:
    if not category_id or not isinstance(category_id, str):
        return None
    parent, _, attribute = category_id.partition(".")
    return ParsedCategoryId(parent=parent, attribute=attribute or None)


def get_parent_category(category_id: str | None) -> str | None:
    if not category_id:
        return None
    resolved = resolve_category(category_id) or category_id
    parsed = parse_category_id(resolved)
    return parsed.parent if parsed else None


def is_attribute(category_id: str | None) -> bool:
    if not category_id:
        return False
    resolved = resolve_category(category_id) or category_id
    parsed = parse_category_id(resolved)
    return bool(parsed and not parsed.is_parent)


def get_all_parent_categories() -> list[str]:
    return list(_index().parents)


def get_all_attributes() -> list[str]:
    return list(_index().attributes)


def get_attributes_for_parent(parent_id: str | None) -> list[str]:
    if not parent_id:
        return []
    category = _index().by_parent.get(parent_id)
    return list(category.attributes.values()) if category else []


def get_category(category_id: str | None) -> CategoryDefinition | None:
    """Return the parent category definition that owns ``category_id``."""
    parent = get_parent_category(category_id)
    if parent is None:
        return None
    return _index().by_parent.get(parent)


def get_group_for_category(category_id: str | None) -> str | None:
    category = get_category(category_id)
    return category.group if category else None


def get_color_for_category(category_id: str | None) -> str | None:
    category = get_category(category_id)
    return category.color if category else None


def get_palette_for_category(category_id: str | None) -> PaletteEntry | None:
    color = get_color_for_category(category_id)
    if color is None:
        return None
    return _index().palette.get(color)
