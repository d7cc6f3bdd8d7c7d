"""Tests for text sanitation, stable hashing and policy serialization."""

import pytest
from hypothesis import given, settings, strategies as st

from spanlight.services.labeling_cache import build_cache_key
from spanlight.text.normalization import (
    DEFAULT_CONFIDENCE,
    build_span_key,
    clamp01,
    create_highlight_signature,
    hash_string,
    matches_at_indices,
    sanitize_text,
    serialize_policy,
    word_count,
)


class TestHashString:
    def test_empty_string_hashes_to_zero(self):
        assert hash_string("") == "0"

    def test_known_value(self):
        # FNV-1a("a") == 0xe40c292c
        assert hash_string("a") == "1r9wi7g"

    def test_is_deterministic(self):
        assert hash_string("wide shot of a cat") == hash_string("wide shot of a cat")

    def test_differs_for_different_text(self):
        assert hash_string("cat") != hash_string("dog")

    def test_output_is_base36(self):
        value = hash_string("Golden hour, 35mm lens 🎥")
        assert value
        assert all(char in "0123456789abcdefghijklmnopqrstuvwxyz" for char in value)


class TestSignature:
    def test_signature_ignores_normalization_form(self):
        assert create_highlight_signature("caf\u00e9") == create_highlight_signature("cafe\u0301")

    def test_sanitize_text_rejects_non_strings(self):
        assert sanitize_text(None) == ""
        assert sanitize_text(42) == ""


class TestSerializePolicy:
    def test_sorted_keys(self):
        assert serialize_policy({"b": 1, "a": True}) == "a:true|b:1"

    def test_insertion_order_does_not_matter(self):
        first = serialize_policy({"allowOverlap": False, "nonTechnicalWordLimit": 6})
        second = serialize_policy({"nonTechnicalWordLimit": 6, "allowOverlap": False})
        assert first == second

    def test_nested_values_are_json_encoded(self):
        assert serialize_policy({"tags": {"b": 1, "a": 2}}) == 'tags:{"a":2,"b":1}'

    def test_empty_or_invalid_policy(self):
        assert serialize_policy({}) == ""
        assert serialize_policy(None) == ""


class TestHelpers:
    def test_word_count(self):
        assert word_count("a cat's slow dolly-in") == 4
        assert word_count("") == 0
        assert word_count(None) == 0

    @pytest.mark.parametrize(
        "value,expected",
        [(1.5, 1.0), (-0.2, 0.0), (0.42, 0.42), ("high", DEFAULT_CONFIDENCE), (None, DEFAULT_CONFIDENCE), (float("nan"), DEFAULT_CONFIDENCE)],
    )
    def test_clamp01(self, value, expected):
        assert clamp01(value) == expected

    def test_matches_at_indices(self):
        assert matches_at_indices("a cat", "cat", 2, 5)
        assert not matches_at_indices("a cat", "cat", 1, 4)
        assert not matches_at_indices("a cat", "cat", -1, 2)

    def test_build_span_key(self):
        assert build_span_key(2, 5, "cat") == "2|5|cat"


class TestCacheKey:
    def _payload(self, **overrides):
        payload = {
            "text": "A cat runs fast",
            "maxSpans": 60,
            "minConfidence": 0.5,
            "templateVersion": "v1",
            "policy": {"nonTechnicalWordLimit": 6, "allowOverlap": False},
        }
        payload.update(overrides)
        return payload

    def test_key_layout(self):
        key = build_cache_key(self._payload())
        assert key == f"60::0.5::v1::allowOverlap:false|nonTechnicalWordLimit:6::anon::{hash_string('A cat runs fast')}"

    def test_cache_id_namespaces_key(self):
        key = build_cache_key(self._payload(cacheId="  prompt-7 "))
        assert key.endswith(f"prompt-7::{hash_string('A cat runs fast')}")

    def test_policy_order_does_not_change_key(self):
        first = build_cache_key(self._payload(policy={"allowOverlap": False, "nonTechnicalWordLimit": 6}))
        second = build_cache_key(self._payload(policy={"nonTechnicalWordLimit": 6, "allowOverlap": False}))
        assert first == second

    def test_any_option_change_changes_key(self):
        base = build_cache_key(self._payload())
        assert build_cache_key(self._payload(maxSpans=10)) != base
        assert build_cache_key(self._payload(minConfidence=0.9)) != base
        assert build_cache_key(self._payload(templateVersion="v2")) != base
        assert build_cache_key(self._payload(text="A dog runs fast")) != base

    def test_hash_function_is_injectable(self):
        key = build_cache_key(self._payload(), hash_fn=lambda text: "fixed")
        assert key.endswith("anon::fixed")


@pytest.mark.property
@given(policy=st.dictionaries(st.text(min_size=1, max_size=8), st.one_of(st.integers(), st.booleans(), st.text(max_size=5))))
@settings(max_examples=100, deadline=None)
def test_policy_serialization_ignores_insertion_order(policy):
    reversed_policy = dict(reversed(list(policy.items())))
    assert serialize_policy(policy) == serialize_policy(reversed_policy)
