"""Plan template engine — turns Jinja2 plan templates into validated plans.

A plan template is a YAML document with Jinja2 placeholders. Rendering:

1. Build a context from the broker credentials, the instance name and,
   during catalog construction, the provider being processed
2. Overlay request parameters (a JSON object) onto the context
3. Render the template with ``StrictUndefined`` so any missing field fails
4. Decode the result as YAML into a ``Plan``
5. Require ``cluster.providerSettings.instanceSizeName``

Rendering is pure: the same template and context always produce the
same plan, which lets the resolver re-render a plan from its ID alone.

Example template::

    name: small-dev
    description: Small cluster in the dev project
    free: true
    apiKey: {{ lookup(credentials.orgs, "5ea0477597999053a5f9cbec") | to_json }}
    project:
      id: 5ea0477597999053a5f9cbed
    cluster:
      name: {{ instance_name }}
      providerSettings:
        providerName: AWS
        instanceSizeName: M10
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jinja2
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from atlas_broker.errors import (
    InvalidParameters,
    TemplateDecodeError,
    TemplateLoadError,
    TemplateRenderError,
    TemplateValidationError,
)
from atlas_broker.models import ClusterSpec, Credentials, Plan, ProjectRef, ProviderSettings

TEMPLATE_DIR_ENV = "ATLAS_BROKER_TEMPLATEDIR"
TEMPLATE_SUFFIXES = (".yaml", ".yml", ".tpl")


# --- Template helpers ---


def to_json(value: Any) -> str:
    """Encode *value* as JSON, which is also valid inline YAML."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    # str() on a StrictUndefined raises UndefinedError
    return json.dumps(value, sort_keys=True, default=str)


def lookup(mapping: Any, key: Any) -> Any:
    """Associative lookup that fails loudly on a missing key."""
    if isinstance(mapping, jinja2.Undefined):
        str(mapping)
    if not isinstance(mapping, Mapping):
        raise TypeError(f"cannot look up {key!r} in {type(mapping).__name__}")
    if key not in mapping:
        raise KeyError(f"key {key!r} not found")
    return mapping[key]


def _key_by_alias(credentials: Any, desc: str) -> Any:
    for group in ("projects", "orgs"):
        for key in lookup(credentials, group).values():
            if key.get("desc") == desc:
                return key
    raise KeyError(f"no key with description {desc!r}")


def _environment() -> jinja2.Environment:
    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        autoescape=False,  # noqa: S701
        keep_trailing_newline=True,
    )
    env.filters["to_json"] = to_json
    env.filters["toJSON"] = to_json
    env.globals["to_json"] = to_json
    env.globals["lookup"] = lookup
    env.globals["index"] = lookup
    env.globals["keyByAlias"] = _key_by_alias
    return env


_ENV = _environment()


# --- Templates ---


class PlanTemplate:
    """A named, compiled plan template.

    Instances are owned by the catalog; service plans only hold references.
    """

    def __init__(self, name: str, source: str) -> None:
        self.name = name
        self.source = source
        try:
            self._template = _ENV.from_string(source)
        except jinja2.TemplateSyntaxError as e:
            raise TemplateLoadError(
                f"Invalid template syntax in {name!r}: {e}", name,
            ) from e

    def __repr__(self) -> str:
        return f"PlanTemplate({self.name!r})"

    def execute(self, variables: dict[str, Any]) -> str:
        try:
            return self._template.render(variables)
        except (jinja2.TemplateError, LookupError, TypeError, ValueError) as e:
            raise TemplateRenderError(
                f"Cannot execute template {self.name!r}: {e}", self.name,
            ) from e


def load_templates(source: str | Path) -> list[PlanTemplate]:
    """Load every template file from a directory, sorted by filename.

    The template name is the file name without its suffixes.

    Raises:
        TemplateLoadError: If the directory or any file cannot be read
            or a template has invalid Jinja syntax.
    """
    source = Path(source)
    if not source.is_dir():
        raise TemplateLoadError(f"Template directory not found: {source}")

    templates: list[PlanTemplate] = []
    seen: set[str] = set()
    for path in sorted(source.iterdir()):
        if not path.is_file() or path.suffix not in TEMPLATE_SUFFIXES:
            continue
        name = path.name.split(".", 1)[0]
        if name in seen:
            raise TemplateLoadError(f"Duplicate template name {name!r} in {source}", name)
        seen.add(name)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateLoadError(f"Cannot read template {path}: {e}", name) from e
        templates.append(PlanTemplate(name, text))

    return templates


def templates_from_env() -> list[PlanTemplate]:
    """Load templates from the directory named by ``ATLAS_BROKER_TEMPLATEDIR``."""
    directory = os.environ.get(TEMPLATE_DIR_ENV)
    if not directory:
        raise TemplateLoadError(f"{TEMPLATE_DIR_ENV} is not set")
    return load_templates(directory)


# --- Context ---


class TemplateContext(BaseModel):
    """Values visible to a template while it renders."""

    model_config = ConfigDict(populate_by_name=True)

    credentials: Credentials = Field(default_factory=Credentials)
    instance_name: str = ""
    cluster: ClusterSpec = Field(
        default_factory=lambda: ClusterSpec(provider_settings=ProviderSettings()),
    )
    project: ProjectRef = Field(default_factory=ProjectRef)

    def for_provider(self, provider_name: str) -> TemplateContext:
        """Copy of this context scoped to one provider."""
        cluster = self.cluster.model_copy(deep=True)
        if cluster.provider_settings is None:
            cluster.provider_settings = ProviderSettings()
        cluster.provider_settings.provider_name = provider_name
        return self.model_copy(update={"cluster": cluster})

    def with_params(self, raw_params: str | bytes | dict[str, Any] | None) -> TemplateContext:
        """Overlay request parameters onto this context.

        Nested objects are merged key by key. Credentials can never be
        overridden from a request.

        Raises:
            InvalidParameters: If the parameters are not a JSON object
                or do not fit the context fields.
        """
        params = decode_params(raw_params)
        if not params:
            return self
        params.pop("credentials", None)

        base = self.model_dump(by_alias=True, exclude={"credentials"}, exclude_none=True)
        merged = _merge(base, params)
        try:
            overlay = TemplateContext.model_validate(merged)
        except ValidationError as e:
            raise InvalidParameters(f"Invalid parameters: {e}") from e
        return overlay.model_copy(update={"credentials": self.credentials})

    def variables(self) -> dict[str, Any]:
        """The plain-data mapping handed to Jinja."""
        return self.model_dump(mode="json", by_alias=True)


def default_context(credentials: Credentials | None = None) -> TemplateContext:
    return TemplateContext(credentials=credentials or Credentials())


def decode_params(raw_params: str | bytes | dict[str, Any] | None) -> dict[str, Any]:
    """Decode raw request parameters into a dict (empty when absent)."""
    if raw_params is None or raw_params in ("", b""):
        return {}
    if isinstance(raw_params, dict):
        return dict(raw_params)
    try:
        params = json.loads(raw_params)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidParameters(f"Parameters are not valid JSON: {e}") from e
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise InvalidParameters(
            f"Parameters must be a JSON object, got {type(params).__name__}"
        )
    return params


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


# --- Rendering ---


def render(template: PlanTemplate, context: TemplateContext) -> Plan:
    """Render *template* against *context* and decode the result.

    Raises:
        TemplateRenderError: Substitution failed.
        TemplateDecodeError: The output is not a YAML plan document.
        TemplateValidationError: The plan has no instance size name.
    """
    raw = template.execute(context.variables())

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise TemplateDecodeError(
            f"Cannot decode template {template.name!r}: {e}", template.name,
        ) from e

    if not isinstance(data, dict):
        raise TemplateDecodeError(
            f"Template {template.name!r} must render to a YAML mapping", template.name,
        )

    try:
        plan = Plan.model_validate(data)
    except ValidationError as e:
        raise TemplateDecodeError(
            f"Template {template.name!r} is not a valid plan: {e}", template.name,
        ) from e

    if not plan.instance_size_name:
        raise TemplateValidationError(
            f"Invalid template {template.name!r}: "
            ".cluster.providerSettings.instanceSizeName must not be empty",
            template.name,
        )

    return plan


def plan_matches_provider(plan: Plan, provider_name: str) -> bool:
    """A plan without a provider name matches every provider."""
    return not plan.provider_name or plan.provider_name == provider_name
