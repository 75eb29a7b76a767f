"""Tenant resolver — picks the project and API client for an instance operation.

Per mode:

- ``BasicAuth``: project and keys come from the authenticated request.
- ``MultiGroup``: reuse the project recorded for an existing instance;
  new instances must pass ``{"project": {"id": ...}}`` in their parameters.
- ``MultiGroupAutoPlans``: the project is part of the plan, found by
  reverse lookup in the catalog.
- ``DynamicPlans``: reuse the recorded project for existing instances;
  for new ones re-render the plan template with the request parameters
  and use the project it declares.

Once a project ID is known its key pair must exist in the credentials;
there is no fallback to another project.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, assert_never

from atlas_broker.atlas.client import AtlasClient, new_client
from atlas_broker.catalog.builder import PROVIDER_KEY, TEMPLATE_KEY, Catalog
from atlas_broker.errors import (
    MissingTenantReference,
    ResolutionError,
    TenantNotFound,
    UnknownPlan,
)
from atlas_broker.models import Credentials, Mode, Plan, RequestAuth
from atlas_broker.plans.templates import (
    PlanTemplate,
    decode_params,
    default_context,
    render,
)
from atlas_broker.state.store import GROUP_ID_KEY, InstanceStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str, str], AtlasClient]
RawParams = str | bytes | dict[str, Any] | None


@dataclass(frozen=True)
class Resolution:
    """A ready-to-use backend client and the project it is bound to."""

    client: AtlasClient
    group_id: str


class TenantResolver:
    """Maps (instance, plan, parameters) to a project and client.

    Holds no per-request state; safe to share across concurrent requests.
    """

    def __init__(
        self,
        mode: Mode,
        credentials: Credentials,
        catalog: Callable[[], Catalog],
        base_url: str,
        store: InstanceStore | None = None,
        client_factory: ClientFactory = new_client,
    ) -> None:
        self._mode = mode
        self._credentials = credentials
        self._catalog = catalog
        self._base_url = base_url
        self._store = store
        self._client_factory = client_factory

    def resolve(
        self,
        instance_id: str,
        plan_id: str,
        raw_params: RawParams = None,
        auth: RequestAuth | None = None,
    ) -> Resolution:
        """Resolve the project and build a client for it.

        Raises:
            TenantNotFound: The resolved project has no credentials.
            MissingTenantReference: A new instance declares no project.
            UnknownPlan: The plan ID is not in the catalog.
        """
        match self._mode:
            case Mode.BASIC_AUTH:
                if auth is None:
                    raise MissingTenantReference(
                        "BasicAuth mode requires request credentials"
                    )
                client = self._client_factory(
                    auth.public_key, auth.private_key, self._base_url,
                )
                return Resolution(client=client, group_id=auth.group_id)

            case Mode.MULTI_GROUP:
                group_id = self.existing_group_id(instance_id)
                if not group_id:
                    group_id = self._group_id_from_params(raw_params)

            case Mode.MULTI_GROUP_AUTO_PLANS:
                group_id = self._catalog().find_group_id(plan_id)

            case Mode.DYNAMIC_PLANS:
                group_id = self.existing_group_id(instance_id)
                if not group_id:
                    group_id = self._group_id_from_plan(plan_id, raw_params)

            case _:
                assert_never(self._mode)

        return Resolution(client=self.client_for(group_id), group_id=group_id)

    def client_for(self, group_id: str) -> AtlasClient:
        key = self._credentials.key_for_project(group_id)
        if key is None:
            raise TenantNotFound(f"Credentials for project ID {group_id!r} not found")
        return self._client_factory(key.public_key, key.private_key, self._base_url)

    def existing_group_id(self, instance_id: str) -> str:
        """Project recorded for an already-provisioned instance, or ``""``."""
        if self._store is None:
            return ""
        doc = self._store.get(instance_id)
        if doc is None:
            return ""

        group_id = doc.get(GROUP_ID_KEY)
        if group_id is None:
            raise ResolutionError(
                f"{GROUP_ID_KEY} not found in instance metadata for {instance_id!r}"
            )
        if not isinstance(group_id, str):
            raise ResolutionError(
                f"{GROUP_ID_KEY} from instance metadata has the wrong type "
                f"{type(group_id).__name__}"
            )
        logger.debug("Instance %s already bound to project %s", instance_id, group_id)
        return group_id

    def parse_plan(self, plan_id: str, raw_params: RawParams = None) -> Plan:
        """Re-render a dynamic plan with the request parameters applied."""
        service_plan = self._catalog().get_plan(plan_id)
        template = service_plan.metadata.get(TEMPLATE_KEY)
        if not isinstance(template, PlanTemplate):
            raise UnknownPlan(f"Plan ID {plan_id!r} does not contain a valid plan template")

        context = default_context(self._credentials)
        provider_name = service_plan.metadata.get(PROVIDER_KEY)
        if provider_name:
            context = context.for_provider(provider_name)
        context = context.with_params(raw_params)
        plan = render(template, context)
        logger.info("Parsed plan %r from template %r", plan.name, template.name)
        return plan

    def _group_id_from_params(self, raw_params: RawParams) -> str:
        params = decode_params(raw_params)
        project = params.get("project")
        group_id = project.get("id") if isinstance(project, dict) else None
        if not isinstance(group_id, str) or not group_id:
            raise MissingTenantReference("Project ID not found in parameters")
        return group_id

    def _group_id_from_plan(self, plan_id: str, raw_params: RawParams) -> str:
        # The project declared by the template wins; request parameters only
        # reach it through the template's own placeholders.
        plan = self.parse_plan(plan_id, raw_params)
        if plan.project is None or not plan.project.id:
            raise MissingTenantReference(
                f"Plan {plan.name!r} does not declare a project ID"
            )
        return plan.project.id
