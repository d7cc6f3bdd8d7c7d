from pathlib import Path

import pytest

from spanlight.prompts import loader

CATEGORIES = [
    {"id": "camera", "label": "Camera", "description": "Framing and movement", "attributes": ["camera.movement"]},
]


def _context(**overrides):
    context = {
        "text": "A slow dolly-in on a cat",
        "categories": CATEGORIES,
        "max_spans": 60,
        "min_confidence": 0.5,
        "non_technical_word_limit": 6,
        "allow_overlap": False,
        "template_version": "v1",
    }
    context.update(overrides)
    return context


def test_list_prompts_domain():
    assert loader.list_prompts(domain="labeling") == ["prompt_label_spans"]
    assert "system_prompt_json" in loader.list_prompts()


def test_get_prompt_metadata_variables():
    meta = loader.get_prompt_metadata("prompt_label_spans")
    assert meta["domain"] == "labeling"
    assert meta["version"] == "v1"
    assert meta["file_path"] == str(Path("v1") / "labeling" / "label_spans.yaml")
    vars_ = set(meta["variables"])
    assert {"text", "categories", "max_spans", "allow_overlap"} <= vars_
    assert meta["output_schema"]["required"] == ["spans"]


def test_get_prompt_metadata_unknown():
    with pytest.raises(KeyError):
        loader.get_prompt_metadata("prompt_missing")


def test_render_prompt_includes_shared():
    rendered = loader.render_prompt("prompt_label_spans", **_context())
    assert rendered.startswith("You are a precise annotation engine.")
    assert "- camera: Camera (Framing and movement)" in rendered
    assert "Spans must not overlap." in rendered
    assert "A slow dolly-in on a cat" in rendered


def test_render_prompt_overlap_rule():
    rendered = loader.render_prompt("prompt_label_spans", **_context(allow_overlap=True))
    assert "Spans may overlap" in rendered


def test_render_prompt_validate_reports_missing():
    context = _context()
    del context["max_spans"]
    with pytest.raises(ValueError, match="max_spans"):
        loader.render_prompt("prompt_label_spans", validate=True, **context)


def test_get_prompt_unknown():
    with pytest.raises(KeyError):
        loader.get_prompt("prompt_missing")


def test_extract_template_variables():
    template = "{{ a }} {% if b %}{% for item in c %}{{ item.x }}{% endfor %}{% endif %}"
    assert loader.extract_template_variables(template) == {"a", "b", "c", "item"}


def test_validate_prompt_output():
    assert loader.validate_prompt_output("prompt_label_spans", {"spans": []})
    with pytest.raises(ValueError):
        loader.validate_prompt_output("prompt_label_spans", {"meta": {}})
    with pytest.raises(KeyError):
        loader.validate_prompt_output("system_prompt_json", {})


def test_invalid_template_raises_and_is_not_silently_ignored():
    prompts_dir = Path(loader.__file__).resolve().parent
    target_dir = prompts_dir / "v1" / "labeling"
    bad_file = target_dir / "bad_template_for_test.yaml"
    bad_file.write_text("bad_prompt: '{% if foo %} missing endif'\n")

    try:
        loader.clear_cache()
        with pytest.raises(ValueError):
            loader._load_prompts()
    finally:
        bad_file.unlink()
        loader.clear_cache()
