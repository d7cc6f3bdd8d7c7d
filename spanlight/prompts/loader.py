"""
Prompt loader for the versioned prompt directory.

    v1/
    ├── shared/     # System prompt fragments
    └── labeling/   # Span labeling prompts

Usage:
    from spanlight.prompts.loader import render_prompt

    rendered = render_prompt("prompt_label_spans", text="...", categories=[...])
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent
_VERSION = "v1"

_DOMAIN_DIRS = [
    "shared",
    "labeling",
]

_SHARED_KEYS = ("system_prompt_json",)


def _domain_files(version: str = _VERSION):
    version_dir = _PROMPTS_DIR / version
    for domain in _DOMAIN_DIRS:
        domain_dir = version_dir / domain
        if not domain_dir.exists():
            continue
        for yaml_file in sorted(domain_dir.glob("*.yaml")):
            yield domain, yaml_file


def _read_yaml(yaml_file: Path) -> dict[str, Any]:
    with yaml_file.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{yaml_file.name} must be a mapping at top level")
    return data


@lru_cache(maxsize=1)
def _load_prompts() -> dict[str, Any]:
    """Load all prompts of the current version.

    Jinja2 syntax errors are raised, not swallowed, so a broken template
    fails at startup and in CI.
    """
    prompts: dict[str, Any] = {}
    for _, yaml_file in _domain_files():
        data = _read_yaml(yaml_file)
        for key, value in data.items():
            template = _template_of(value)
            if template is None:
                continue
            try:
                _jinja_env().parse(template)
            except Exception as e:
                raise ValueError(f"Invalid Jinja2 template in {yaml_file}:{key}: {e}") from e
        prompts.update(data)
    return prompts


def _template_of(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("template"), str):
        return value["template"]
    return None


def get_prompt(name: str) -> str:
    """
    Get a prompt template by name.

    Supports two prompt shapes:
    - String value: { name: "template string" }
    - Mapping value: { name: { template: "...", required_variables: [...], output_schema: {...} } }

    Raises:
        KeyError: If prompt not found or not a string
    """
    template = _template_of(_load_prompts().get(name))
    if template is None:
        raise KeyError(f"Prompt '{name}' not found or not a string")
    return template


@lru_cache(maxsize=1)
def _jinja_env() -> Environment:
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_prompt(name: str, validate: bool = False, **context: Any) -> str:
    """
    Render a prompt template with the given context.

    Shared fragments (``system_prompt_json``) are added to the context when
    not explicitly provided.

    Raises:
        ValueError: If validate=True and required variables are missing
    """
    prompts = _load_prompts()
    for shared_key in _SHARED_KEYS:
        if shared_key not in context and shared_key in prompts:
            context[shared_key] = prompts[shared_key]

    if validate:
        missing = check_required_variables(name, context)
        if missing:
            raise ValueError(f"Missing required variables for '{name}': {missing}")

    template = get_prompt(name)
    return _jinja_env().from_string(template).render(**context).strip()


def list_prompts(domain: str | None = None) -> list[str]:
    if domain is None:
        return list(_load_prompts().keys())
    names: list[str] = []
    for file_domain, yaml_file in _domain_files():
        if file_domain == domain:
            names.extend(_read_yaml(yaml_file).keys())
    return names


def get_prompt_metadata(name: str) -> dict[str, Any]:
    """
    Get metadata about a prompt (domain, version, file path, variables,
    required_variables, output_schema).
    """
    for domain, yaml_file in _domain_files():
        data = _read_yaml(yaml_file)
        if name not in data:
            continue
        entry = data[name]
        template = _template_of(entry) or ""
        required_variables: list[str] = []
        output_schema = None
        if isinstance(entry, dict):
            required_variables = entry.get("required_variables", []) or []
            output_schema = entry.get("output_schema")
        return {
            "domain": domain,
            "version": _VERSION,
            "file_path": str(yaml_file.relative_to(_PROMPTS_DIR)),
            "variables": sorted(extract_template_variables(template)),
            "required_variables": required_variables,
            "output_schema": output_schema,
        }
    raise KeyError(f"Prompt '{name}' not found")


def extract_template_variables(template: str) -> set[str]:
    """Base variable names used in ``{{ }}`` expressions and ``if``/``for`` tags."""
    variables = set()

    var_pattern = r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)"
    for match in re.finditer(var_pattern, template):
        variables.add(match.group(1))

    control_pattern = r"\{%\s*(?:if|elif)\s+([a-zA-Z_][a-zA-Z0-9_]*)"
    for match in re.finditer(control_pattern, template):
        variables.add(match.group(1))

    loop_pattern = r"\{%\s*for\s+[a-zA-Z_][a-zA-Z0-9_, ]*\s+in\s+([a-zA-Z_][a-zA-Z0-9_]*)"
    for match in re.finditer(loop_pattern, template):
        variables.add(match.group(1))

    return variables


def check_required_variables(name: str, context: dict[str, Any]) -> list[str]:
    try:
        meta = get_prompt_metadata(name)
    except KeyError:
        return []

    required = meta.get("required_variables", [])
    if required:
        return [v for v in required if v not in context]

    variables = extract_template_variables(get_prompt(name)) - set(_SHARED_KEYS)
    return [v for v in variables if v not in context]


def validate_prompt_output(name: str, output: dict) -> bool:
    """
    Check a parsed model answer against the ``required`` list of the
    prompt's declared ``output_schema``.

    Raises:
        KeyError: If prompt is not found or has no schema
        ValueError: If validation fails
    """
    schema = get_prompt_metadata(name).get("output_schema")
    if not schema:
        raise KeyError(f"No output_schema declared for prompt '{name}'")

    required = schema.get("required") if isinstance(schema, dict) else None
    if required and isinstance(required, list):
        missing = [k for k in required if k not in output]
        if missing:
            raise ValueError(f"Missing required keys in output: {missing}")
    return True


def clear_cache() -> None:
    """Clear all cached prompts (useful for hot-reload scenarios)."""
    _load_prompts.cache_clear()
    _jinja_env.cache_clear()
