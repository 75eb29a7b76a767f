"""Catalog builder — one service per provider, plans chosen by broker mode.

For each provider in ``PROVIDER_NAMES`` order:

1. Skip it if a whitelist is configured and has no entry for it
2. ``TENANT`` uses the hard-coded shared service; others are fetched
   from the backend
3. Generate plans with the strategy for the broker mode:
   static (one per instance size), auto (one per size and project),
   dynamic (one per matching plan template)
4. Keep only whitelisted plan names
5. Index every plan by ID and every service by provider

A backend fetch failure aborts the build; no partial catalog is returned.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import assert_never

from atlas_broker import ids
from atlas_broker.atlas.client import AtlasError, ProviderSource
from atlas_broker.errors import (
    BackendFetchError,
    ConfigurationError,
    MissingTenantReference,
    TemplateFault,
    UnknownPlan,
)
from atlas_broker.models import (
    Credentials,
    Mode,
    Provider,
    Service,
    ServicePlan,
    Whitelist,
)
from atlas_broker.plans.templates import (
    PlanTemplate,
    TemplateContext,
    plan_matches_provider,
    render,
)

logger = logging.getLogger(__name__)

SHARED_PROVIDER = "TENANT"
PROVIDER_NAMES: tuple[str, ...] = ("AWS", "GCP", "AZURE", SHARED_PROVIDER)

# Metadata keys on ServicePlan.metadata
TEMPLATE_KEY = "template"
INSTANCE_SIZE_KEY = "instanceSize"
PROVIDER_KEY = "providerName"
GROUP_ID_KEY = "groupID"


def shared_service() -> Service:
    """The shared-tier service. Its sizes are fixed and never fetched."""
    return Service(
        id=ids.service_id(SHARED_PROVIDER),
        name="mongodb-atlas-tenant",
        description=f'Atlas cluster hosted on "{SHARED_PROVIDER}"',
        plans=[
            ServicePlan(
                id=ids.plan_id(SHARED_PROVIDER, size),
                name=size,
                description=f'Instance size "{size}"',
            )
            for size in ("M2", "M5")
        ],
    )


class Catalog:
    """The assembled service catalog.

    Owns the plan templates it was built from; dynamic service plans hold
    references into that set. Treated as immutable once built.
    """

    def __init__(self, templates: Sequence[PlanTemplate] = ()) -> None:
        self.services: list[Service] = []
        self.plans: dict[str, ServicePlan] = {}
        self.providers: dict[str, Provider] = {}
        self.templates: tuple[PlanTemplate, ...] = tuple(templates)

    def __len__(self) -> int:
        return len(self.services)

    def add_service(self, service: Service, provider: Provider | None = None) -> None:
        for plan in service.plans:
            if plan.id in self.plans:
                raise ConfigurationError(f"Duplicate plan ID in catalog: {plan.id}")
            self.plans[plan.id] = plan
        if provider is not None:
            self.providers[service.id] = provider
        self.services.append(service)

    def get_plan(self, plan_id: str) -> ServicePlan:
        plan = self.plans.get(plan_id)
        if plan is None:
            raise UnknownPlan(f"Plan ID {plan_id!r} not found in catalog")
        return plan

    def find_group_id(self, plan_id: str) -> str:
        """Reverse-resolve the project of an auto-generated plan."""
        plan = self.get_plan(plan_id)
        group_id = plan.metadata.get(GROUP_ID_KEY)
        if not isinstance(group_id, str) or not group_id:
            raise MissingTenantReference(f"Plan {plan_id!r} is not bound to a project")
        return group_id

    def service_ids(self) -> list[str]:
        return [s.id for s in self.services]

    def plan_ids(self) -> list[str]:
        return list(self.plans)

    def to_dict(self) -> dict[str, list[dict]]:
        return {"services": [s.to_dict() for s in self.services]}


class CatalogBuilder:
    """Builds a Catalog from backend providers, mode, credentials and whitelist."""

    def __init__(
        self,
        provider_source: ProviderSource,
        mode: Mode,
        credentials: Credentials | None = None,
        whitelist: Whitelist | None = None,
        templates: Sequence[PlanTemplate] | None = None,
    ) -> None:
        self._source = provider_source
        self._mode = mode
        self._credentials = credentials or Credentials()
        self._whitelist = whitelist
        self._templates = tuple(templates or ())

        if mode is Mode.DYNAMIC_PLANS and templates is None:
            raise ConfigurationError("DynamicPlans mode requires plan templates")

    def build(self) -> Catalog:
        catalog = Catalog(self._templates)

        for provider_name in PROVIDER_NAMES:
            if self._whitelist is not None and provider_name not in self._whitelist:
                logger.info("Provider %s not whitelisted, skipping", provider_name)
                continue

            provider: Provider | None = None
            if provider_name == SHARED_PROVIDER:
                service = shared_service()
            else:
                provider = self._fetch(provider_name)
                service = self.build_service(provider)

            if self._whitelist is not None:
                allowed = set(self._whitelist[provider_name] or ())
                service.plans = [p for p in service.plans if p.name in allowed]

            catalog.add_service(service, provider)
            logger.info(
                "Added service %s with %d plan(s)", service.id, len(service.plans),
            )

        return catalog

    def _fetch(self, provider_name: str) -> Provider:
        try:
            return self._source.get_provider(provider_name)
        except AtlasError as e:
            raise BackendFetchError(
                f"Cannot fetch provider {provider_name}: {e}"
            ) from e

    def build_service(self, provider: Provider) -> Service:
        return Service(
            id=ids.service_id(provider.name),
            name=f"mongodb-atlas-{provider.name.lower()}",
            description=f'Atlas cluster hosted on "{provider.name}"',
            plans=self.build_plans(provider),
        )

    def build_plans(self, provider: Provider) -> list[ServicePlan]:
        match self._mode:
            case Mode.BASIC_AUTH:
                return self._plans_static(provider)
            case Mode.MULTI_GROUP:
                raise ConfigurationError(
                    "MultiGroup mode has no catalog strategy; "
                    "use MultiGroupAutoPlans or DynamicPlans"
                )
            case Mode.MULTI_GROUP_AUTO_PLANS:
                return self._plans_auto(provider)
            case Mode.DYNAMIC_PLANS:
                return self._plans_dynamic(provider)
            case _:
                assert_never(self._mode)

    def _plans_static(self, provider: Provider) -> list[ServicePlan]:
        return [
            ServicePlan(
                id=ids.plan_id(provider.name, size.name),
                name=size.name,
                description=f'Instance size "{size.name}"',
                metadata={INSTANCE_SIZE_KEY: size},
            )
            for size in provider.instance_sizes.values()
        ]

    def _plans_auto(self, provider: Provider) -> list[ServicePlan]:
        plans: list[ServicePlan] = []
        for size in provider.instance_sizes.values():
            for group_id, key in self._credentials.projects.items():
                suffix = ids.normalize(key.desc) if key.desc else group_id
                plans.append(ServicePlan(
                    id=ids.plan_id(provider.name, size.name, group_id),
                    name=f"{size.name}-{suffix}",
                    description=f'Instance size "{size.name}"',
                    metadata={GROUP_ID_KEY: group_id, INSTANCE_SIZE_KEY: size},
                ))
        return plans

    def _plans_dynamic(self, provider: Provider) -> list[ServicePlan]:
        context = TemplateContext(credentials=self._credentials).for_provider(provider.name)
        plans: list[ServicePlan] = []
        seen: set[str] = set()

        for template in self._templates:
            try:
                plan = render(template, context)
            except TemplateFault as e:
                logger.error("Skipping plan template %r: %s", template.name, e)
                continue

            if not plan_matches_provider(plan, provider.name):
                continue

            plan_id = ids.plan_id(provider.name, plan.name)
            if plan_id in seen:
                logger.error(
                    "Skipping plan template %r: plan name %r already used for %s",
                    template.name, plan.name, provider.name,
                )
                continue
            seen.add(plan_id)

            plans.append(ServicePlan(
                id=plan_id,
                name=plan.name,
                description=plan.description or "",
                free=plan.free,
                metadata={
                    TEMPLATE_KEY: template,
                    PROVIDER_KEY: provider.name,
                    INSTANCE_SIZE_KEY: provider.instance_sizes.get(plan.instance_size_name),
                },
            ))

        return plans
