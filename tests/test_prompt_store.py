from __future__ import annotations

import json
import os

import pytest

from contact_finder.services.prompt_store import PromptCatalog, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "query_enhancement.expansion",
        count=3,
        query="climate reporters",
        criteria="countries: gb",
    )
    assert "Generate 3 alternative search queries" in prompt
    assert '"climate reporters"' in prompt
    assert "countries: gb" in prompt


def test_render_prompt_joins_list_entries_with_newlines():
    prompt = render_prompt("query_enhancement.system_prompt")
    assert "numbered list" in prompt
    assert "\n" in render_prompt("query_enhancement.refinement", count=2, query="q", criteria="none")


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_reports_missing_values():
    with pytest.raises(KeyError, match="country_context"):
        render_prompt("query_enhancement.localization", count=1, query="q", criteria="none", country="gb")


def test_catalog_flattens_nested_keys_and_reloads_on_change(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"outer": {"inner": ["Find $what", "in $where"]}}), encoding="utf-8")
    catalog = PromptCatalog(path)

    assert catalog.keys() == ["outer.inner"]
    assert catalog.placeholders("outer.inner") == {"what", "where"}
    assert catalog.render("outer.inner", what=["editors", "reporters"], where=None) == (
        "Find editors, reporters\nin none"
    )

    path.write_text(json.dumps({"outer": {"inner": "Only $what"}}), encoding="utf-8")
    os.utime(path, ns=(path.stat().st_atime_ns, path.stat().st_mtime_ns + 1_000_000))
    assert catalog.render("outer.inner", what="editors") == "Only editors"


def test_catalog_rejects_non_string_entries(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"broken": 3}), encoding="utf-8")
    with pytest.raises(TypeError, match="broken"):
        PromptCatalog(path).keys()
