"""Taxonomy API endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from spanlight.api.v1.schemas import CategoryRead, TaxonomyRead
from spanlight.config import loaders
from spanlight.core import taxonomy

router = APIRouter(prefix="/taxonomy", tags=["taxonomy"])


@router.get("", response_model=TaxonomyRead)
def get_taxonomy():
    """Categories with their attributes and highlight colors."""
    config = loaders.load_taxonomy_v3()
    categories = []
    for category in config.categories:
        palette = taxonomy.get_palette_for_category(category.id)
        categories.append(
            CategoryRead(
                id=category.id,
                label=category.label,
                description=category.description,
                group=category.group,
                color=category.color,
                bg=palette.bg if palette else None,
                border=palette.border if palette else None,
                attributes=taxonomy.get_attributes_for_parent(category.id),
            )
        )
    return TaxonomyRead(
        version=taxonomy.taxonomy_version(),
        default_category=taxonomy.default_category(),
        categories=categories,
        legacy_aliases=taxonomy.legacy_aliases(),
    )


@router.post("/reload", response_model=TaxonomyRead)
def reload_taxonomy():
    """Reload the taxonomy from disk."""
    loaders.clear_config_cache()
    return get_taxonomy()
