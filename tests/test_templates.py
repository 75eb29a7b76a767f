"""Tests for plan template loading, context handling and rendering."""

from __future__ import annotations

from pathlib import Path

import pytest

from atlas_broker.errors import (
    InvalidParameters,
    TemplateDecodeError,
    TemplateLoadError,
    TemplateRenderError,
    TemplateValidationError,
)
from atlas_broker.models import Credentials
from atlas_broker.plans.templates import (
    TEMPLATE_DIR_ENV,
    PlanTemplate,
    TemplateContext,
    decode_params,
    default_context,
    load_templates,
    lookup,
    plan_matches_provider,
    render,
    templates_from_env,
    to_json,
)
from fakes import AWS_SMALL, NO_SIZE, PARAM_PROJECT, write_templates

# --- Loading ---


class TestLoadTemplates:
    def test_loads_in_filename_order(self, template_dir: Path):
        templates = load_templates(template_dir)
        assert [t.name for t in templates] == [
            "01-aws-small", "02-anywhere", "03-broken", "04-param-project",
        ]

    def test_ignores_other_files(self, tmp_path: Path):
        write_templates(tmp_path, {"plan": AWS_SMALL})
        (tmp_path / "README.md").write_text("notes", encoding="utf-8")
        (tmp_path / "sub").mkdir()
        assert [t.name for t in load_templates(tmp_path)] == ["plan"]

    def test_accepts_tpl_suffix(self, tmp_path: Path):
        (tmp_path / "small.yml.tpl").write_text(AWS_SMALL, encoding="utf-8")
        assert [t.name for t in load_templates(tmp_path)] == ["small"]

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(TemplateLoadError, match="not found"):
            load_templates(tmp_path / "nope")

    def test_syntax_error(self, tmp_path: Path):
        write_templates(tmp_path, {"bad": "name: {{ unclosed\n"})
        with pytest.raises(TemplateLoadError, match="bad"):
            load_templates(tmp_path)

    def test_duplicate_names(self, tmp_path: Path):
        (tmp_path / "a.yml").write_text(AWS_SMALL, encoding="utf-8")
        (tmp_path / "a.yaml").write_text(AWS_SMALL, encoding="utf-8")
        with pytest.raises(TemplateLoadError, match="Duplicate"):
            load_templates(tmp_path)

    def test_empty_directory(self, tmp_path: Path):
        assert load_templates(tmp_path) == []

    def test_from_env(self, template_dir: Path, monkeypatch):
        monkeypatch.setenv(TEMPLATE_DIR_ENV, str(template_dir))
        assert len(templates_from_env()) == 4

    def test_from_env_unset(self, monkeypatch):
        monkeypatch.delenv(TEMPLATE_DIR_ENV, raising=False)
        with pytest.raises(TemplateLoadError):
            templates_from_env()


# --- Helpers ---


class TestHelpers:
    def test_to_json_sorted(self):
        assert to_json({"b": 1, "a": "x"}) == '{"a": "x", "b": 1}'

    def test_lookup_hit(self):
        assert lookup({"k": 1}, "k") == 1

    def test_lookup_miss(self):
        with pytest.raises(KeyError):
            lookup({}, "k")

    def test_lookup_non_mapping(self):
        with pytest.raises(TypeError):
            lookup(["a"], 0)


# --- Context ---


class TestTemplateContext:
    def test_for_provider_sets_provider_name(self, credentials: Credentials):
        ctx = default_context(credentials).for_provider("GCP")
        assert ctx.variables()["cluster"]["providerSettings"]["providerName"] == "GCP"

    def test_for_provider_does_not_mutate_original(self):
        base = default_context()
        base.for_provider("AWS")
        assert base.cluster.provider_settings.provider_name == ""

    def test_variables_expose_credentials_by_alias(self, credentials: Credentials):
        data = default_context(credentials).variables()
        assert data["credentials"]["projects"]["p1"]["publicKey"] == "pub1"
        assert data["credentials"]["orgs"]["org1"]["desc"] == "main org"

    def test_with_params_overlays(self):
        ctx = default_context().with_params('{"instance_name": "db1", "project": {"id": "p9"}}')
        assert ctx.instance_name == "db1"
        assert ctx.project.id == "p9"

    def test_with_params_merges_nested(self):
        ctx = default_context().for_provider("AWS").with_params(
            {"cluster": {"providerSettings": {"regionName": "EU_WEST_1"}}},
        )
        settings = ctx.cluster.provider_settings
        assert settings.provider_name == "AWS"
        assert settings.region_name == "EU_WEST_1"

    def test_with_params_cannot_replace_credentials(self, credentials: Credentials):
        ctx = default_context(credentials).with_params({"credentials": {"projects": {}}})
        assert "p1" in ctx.credentials.projects

    def test_with_params_empty_returns_same(self):
        ctx = default_context()
        assert ctx.with_params(None) is ctx
        assert ctx.with_params("") is ctx

    def test_with_params_invalid_shape(self):
        with pytest.raises(InvalidParameters):
            default_context().with_params({"project": "not-an-object"})


class TestDecodeParams:
    def test_bytes(self):
        assert decode_params(b'{"a": 1}') == {"a": 1}

    def test_null(self):
        assert decode_params("null") == {}

    def test_invalid_json(self):
        with pytest.raises(InvalidParameters, match="JSON"):
            decode_params("{oops")

    def test_not_an_object(self):
        with pytest.raises(InvalidParameters, match="object"):
            decode_params("[1, 2]")


# --- Rendering ---


class TestRender:
    def test_renders_plan(self, credentials: Credentials):
        template = PlanTemplate("small", AWS_SMALL)
        ctx = default_context(credentials).with_params({"instance_name": "db-1"})
        plan = render(template, ctx)
        assert plan.name == "aws-small"
        assert plan.free is True
        assert plan.project.id == "p1"
        assert plan.cluster.name == "db-1"
        assert plan.provider_name == "AWS"
        assert plan.instance_size_name == "M10"

    def test_embeds_credentials_with_to_json(self, credentials: Credentials):
        template = PlanTemplate("key", """\
name: with-key
apiKey: {{ lookup(credentials.orgs, "org1") | to_json }}
cluster:
  providerSettings:
    instanceSizeName: M10
""")
        plan = render(template, default_context(credentials))
        assert plan.api_key == {
            "desc": "main org", "privateKey": "orgpriv", "publicKey": "orgpub",
        }

    def test_key_by_alias(self, credentials: Credentials):
        template = PlanTemplate("alias", """\
name: alias
apiKey: {{ keyByAlias(credentials, "alpha") | toJSON }}
cluster:
  providerSettings:
    instanceSizeName: M10
""")
        plan = render(template, default_context(credentials))
        assert plan.api_key["publicKey"] == "pub1"

    def test_undefined_field_is_render_error(self):
        template = PlanTemplate("undef", "name: {{ nothing_here }}\n")
        with pytest.raises(TemplateRenderError, match="undef"):
            render(template, default_context())

    def test_missing_org_key_is_render_error(self, credentials: Credentials):
        template = PlanTemplate("org", 'apiKey: {{ lookup(credentials.orgs, "nope") | to_json }}\n')
        with pytest.raises(TemplateRenderError):
            render(template, default_context(credentials))

    def test_undefined_piped_to_json_is_render_error(self):
        template = PlanTemplate("pipe", "apiKey: {{ credentials.orgs.nope | to_json }}\n")
        with pytest.raises(TemplateRenderError):
            render(template, default_context())

    def test_malformed_yaml_is_decode_error(self):
        template = PlanTemplate("yaml", "name: [unclosed\n")
        with pytest.raises(TemplateDecodeError):
            render(template, default_context())

    def test_scalar_document_is_decode_error(self):
        template = PlanTemplate("scalar", "just a string\n")
        with pytest.raises(TemplateDecodeError, match="mapping"):
            render(template, default_context())

    def test_missing_name_is_decode_error(self):
        template = PlanTemplate("noname", "description: x\n")
        with pytest.raises(TemplateDecodeError):
            render(template, default_context())

    def test_missing_instance_size_is_validation_error(self):
        template = PlanTemplate("nosize", NO_SIZE)
        with pytest.raises(TemplateValidationError, match="instanceSizeName"):
            render(template, default_context())

    def test_empty_placeholder_renders_as_null(self):
        plan = render(PlanTemplate("p", PARAM_PROJECT), default_context())
        assert not plan.project.id

    def test_deterministic(self, credentials: Credentials):
        template = PlanTemplate("small", AWS_SMALL)
        ctx = default_context(credentials).for_provider("AWS")
        assert render(template, ctx) == render(template, ctx)

    def test_context_is_not_mutated(self, credentials: Credentials):
        ctx = TemplateContext(credentials=credentials)
        before = ctx.model_dump()
        render(PlanTemplate("small", AWS_SMALL), ctx)
        assert ctx.model_dump() == before


class TestPlanMatchesProvider:
    def test_no_provider_matches_any(self):
        plan = render(PlanTemplate("p", """\
name: p
cluster:
  providerSettings:
    instanceSizeName: M10
"""), default_context())
        assert plan_matches_provider(plan, "AWS")
        assert plan_matches_provider(plan, "GCP")

    def test_pinned_provider(self):
        plan = render(PlanTemplate("small", AWS_SMALL), default_context())
        assert plan_matches_provider(plan, "AWS")
        assert not plan_matches_provider(plan, "AZURE")
