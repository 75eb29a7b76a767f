"""Core data models for the Atlas service broker.

Defines the schemas for:
- Broker operating modes
- Credentials (broker auth, per-project API keys, per-org keys)
- Backend providers and their instance sizes
- Plan definitions decoded from templates
- Protocol catalog entries (services and service plans)
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class Mode(enum.StrEnum):
    """How plans and projects are resolved. Fixed for the broker's lifetime."""

    BASIC_AUTH = "BasicAuth"
    MULTI_GROUP = "MultiGroup"
    MULTI_GROUP_AUTO_PLANS = "MultiGroupAutoPlans"
    DYNAMIC_PLANS = "DynamicPlans"


# --- Credentials ---


class BrokerAuth(BaseModel):
    """Basic-auth credentials that callers use against the broker itself."""

    username: str
    password: str


class ProjectKey(BaseModel):
    """A programmatic API key pair for one backend project or org."""

    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(alias="publicKey")
    private_key: str = Field(alias="privateKey")
    desc: str = ""


class Credentials(BaseModel):
    """All keys the broker knows about, loaded once at startup.

    ``projects`` is keyed by project (group) ID, ``orgs`` by organization ID.
    Org keys are only ever used as template input.
    """

    broker: BrokerAuth | None = None
    projects: dict[str, ProjectKey] = Field(default_factory=dict)
    orgs: dict[str, ProjectKey] = Field(default_factory=dict)

    def key_for_project(self, group_id: str) -> ProjectKey | None:
        return self.projects.get(group_id)

    def key_by_alias(self, desc: str) -> ProjectKey | None:
        """Return the first project or org key whose description is *desc*."""
        for key in (*self.projects.values(), *self.orgs.values()):
            if key.desc == desc:
                return key
        return None


class RequestAuth(BaseModel):
    """Project and key pair taken from an authenticated request (BasicAuth mode)."""

    group_id: str
    public_key: str
    private_key: str


# --- Backend providers ---


class InstanceSize(BaseModel):
    """A named capacity tier. Unknown backend fields are kept as-is."""

    model_config = ConfigDict(extra="allow")

    name: str


class Provider(BaseModel):
    """A cloud provider and the instance sizes it offers, in backend order."""

    name: str
    instance_sizes: dict[str, InstanceSize] = Field(default_factory=dict)


# --- Plan definitions ---


class ProviderSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    provider_name: str | None = Field("", alias="providerName")
    instance_size_name: str | None = Field("", alias="instanceSizeName")
    region_name: str | None = Field("", alias="regionName")


class ClusterSpec(BaseModel):
    """Cluster definition from a plan. Extra fields pass through to the backend."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str | None = ""
    provider_settings: ProviderSettings | None = Field(None, alias="providerSettings")


class ProjectRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = ""
    name: str | None = ""
    desc: str | None = ""


class Plan(BaseModel):
    """A plan decoded from a rendered template."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str | None = ""
    free: bool | None = None
    project: ProjectRef | None = None
    cluster: ClusterSpec | None = None
    api_key: dict[str, Any] | None = Field(None, alias="apiKey")

    @property
    def provider_name(self) -> str:
        if self.cluster is None or self.cluster.provider_settings is None:
            return ""
        return self.cluster.provider_settings.provider_name or ""

    @property
    def instance_size_name(self) -> str:
        if self.cluster is None or self.cluster.provider_settings is None:
            return ""
        return self.cluster.provider_settings.instance_size_name or ""


# --- Catalog entries ---


class ServicePlan(BaseModel):
    """A protocol-level plan.

    ``metadata`` is opaque to callers. Dynamic plans keep a reference to
    their originating template under ``"template"`` so the plan can be
    re-rendered during instance operations.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    description: str = ""
    free: bool | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }
        if self.free is not None:
            data["free"] = self.free
        return data


class Service(BaseModel):
    """A protocol-level service: one per provider."""

    id: str
    name: str
    description: str = ""
    bindable: bool = True
    instances_retrievable: bool = False
    bindings_retrievable: bool = False
    plan_updateable: bool = True
    plans: list[ServicePlan] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "bindable": self.bindable,
            "instances_retrievable": self.instances_retrievable,
            "bindings_retrievable": self.bindings_retrievable,
            "plan_updateable": self.plan_updateable,
            "plans": [p.to_dict() for p in self.plans],
        }


# Provider name -> allowed plan names. ``None`` means unrestricted.
Whitelist = dict[str, list[str]]
