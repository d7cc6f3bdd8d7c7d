from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class CategoryDefinition(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    description: str = Field(default="")
    group: str = Field(pattern=r"^(entity|setting|technical)$")
    color: str = Field(min_length=1)
    attributes: dict[str, str] = Field(default_factory=dict)


class PaletteEntry(BaseModel):
    bg: str = Field(min_length=1)
    border: str = Field(min_length=1)


class TaxonomyV3(BaseModel):
    version: str
    default_category: str = Field(min_length=1)
    categories: list[CategoryDefinition] = Field(min_length=1)
    palette: dict[str, PaletteEntry]
    legacy_aliases: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self) -> "TaxonomyV3":
        parents = {category.id for category in self.categories}
        valid = set(parents)
        for category in self.categories:
            valid.update(category.attributes.values())
            if category.color not in self.palette:
                raise ValueError(f"Category '{category.id}' uses unknown color '{category.color}'")
        for attribute_id in valid - parents:
            if attribute_id.split(".", 1)[0] not in parents:
                raise ValueError(f"Attribute '{attribute_id}' has no parent category")
        for alias, target in self.legacy_aliases.items():
            if target not in valid:
                raise ValueError(f"Legacy alias '{alias}' points at unknown category '{target}'")
        if self.default_category not in valid:
            raise ValueError(f"Default category '{self.default_category}' is not in the taxonomy")
        return self


_CONFIG_DIR = Path(__file__).parent
_config_version = 0


@lru_cache(maxsize=1)
def load_taxonomy_v3() -> TaxonomyV3:
    """Load and validate the category taxonomy."""
    path = _CONFIG_DIR / "taxonomy_v3.json"
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return TaxonomyV3.model_validate(data)


def clear_config_cache():
    """Clear all cached config data. Call this to force config reload."""
    global _config_version
    load_taxonomy_v3.cache_clear()
    _config_version += 1


def get_config_version() -> int:
    """Get current config version (incremented on each cache clear)."""
    return _config_version
