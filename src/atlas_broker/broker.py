"""Broker façade — catalog queries and per-instance client resolution.

The catalog is process-wide state with an explicit lifecycle: built once,
either eagerly at construction or on first use behind a lock, then read
without locking. Concurrent first callers wait for the single build and
share its result. ``rebuild_catalog()`` swaps in a fresh catalog; a
failed build never replaces the published one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from atlas_broker import ids
from atlas_broker.atlas.client import AtlasClient, ProviderSource
from atlas_broker.catalog.builder import Catalog, CatalogBuilder
from atlas_broker.config import BrokerConfig, load_credentials, load_whitelist
from atlas_broker.errors import ResolutionError
from atlas_broker.models import Credentials, Mode, Plan, RequestAuth, Service, Whitelist
from atlas_broker.plans.templates import PlanTemplate, load_templates
from atlas_broker.resolver import ClientFactory, RawParams, Resolution, TenantResolver
from atlas_broker.state.store import (
    CLUSTER_NAME_KEY,
    FileInstanceStore,
    InstanceStore,
)

logger = logging.getLogger(__name__)


class Broker:
    """Answers catalog queries and resolves clients for instance operations."""

    def __init__(
        self,
        mode: Mode,
        provider_source: ProviderSource,
        base_url: str,
        credentials: Credentials | None = None,
        whitelist: Whitelist | None = None,
        templates: Sequence[PlanTemplate] | None = None,
        store: InstanceStore | None = None,
        client_factory: ClientFactory | None = None,
        build_eagerly: bool = False,
    ) -> None:
        self._mode = mode
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials or Credentials()
        self._store = store
        self._builder = CatalogBuilder(
            provider_source,
            mode,
            credentials=self._credentials,
            whitelist=whitelist,
            templates=templates,
        )
        self._catalog: Catalog | None = None
        self._lock = threading.Lock()

        resolver_kwargs = {}
        if client_factory is not None:
            resolver_kwargs["client_factory"] = client_factory
        self._resolver = TenantResolver(
            mode,
            self._credentials,
            self.catalog,
            self._base_url,
            store=store,
            **resolver_kwargs,
        )

        if build_eagerly:
            self.catalog()

    @classmethod
    def from_config(cls, config: BrokerConfig, *, build_eagerly: bool = False) -> Broker:
        """Wire a broker from a loaded config.

        Raises:
            ConfigurationError: If a referenced file is missing or invalid.
            TemplateLoadError: If the template directory cannot be loaded.
        """
        credentials = load_credentials(config.credentials) if config.credentials else None
        whitelist = load_whitelist(config.whitelist) if config.whitelist else None
        templates = load_templates(config.templates) if config.templates else None
        store = FileInstanceStore(config.instance_store) if config.instance_store else None
        timeout = config.timeout

        def client_factory(public_key: str, private_key: str, base_url: str) -> AtlasClient:
            return AtlasClient(base_url, public_key, private_key, timeout=timeout)

        # Provider metadata is served from the API root without auth.
        source = AtlasClient(config.base_url, timeout=timeout)

        return cls(
            config.mode,
            source,
            config.base_url,
            credentials=credentials,
            whitelist=whitelist,
            templates=templates,
            store=store,
            client_factory=client_factory,
            build_eagerly=build_eagerly,
        )

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    # --- Catalog ---

    def catalog(self) -> Catalog:
        """Return the catalog, building it on first use."""
        catalog = self._catalog
        if catalog is not None:
            return catalog
        with self._lock:
            if self._catalog is None:
                logger.info("Building service catalog (mode=%s)", self._mode)
                self._catalog = self._builder.build()
            return self._catalog

    def services(self) -> list[Service]:
        """The ordered service list presented to protocol callers."""
        logger.info("Retrieving service catalog")
        return list(self.catalog().services)

    get_catalog = services

    def rebuild_catalog(self) -> Catalog:
        """Build a fresh catalog and publish it if the build succeeds."""
        with self._lock:
            catalog = self._builder.build()
            self._catalog = catalog
            logger.info("Rebuilt service catalog with %d service(s)", len(catalog))
            return catalog

    # --- Instance operations ---

    def resolve_for_instance(
        self,
        instance_id: str,
        plan_id: str,
        raw_params: RawParams = None,
        auth: RequestAuth | None = None,
    ) -> Resolution:
        """Resolve the project and a backend client for an instance operation."""
        return self._resolver.resolve(instance_id, plan_id, raw_params, auth=auth)

    def parse_plan(self, plan_id: str, raw_params: RawParams = None) -> Plan:
        return self._resolver.parse_plan(plan_id, raw_params)

    def cluster_name_for(self, instance_id: str) -> str:
        """Cluster name recorded for an instance.

        Without an instance store the name is derived from the instance ID.
        """
        if self._store is None:
            return ids.cluster_name(instance_id)

        doc = self._store.get(instance_id)
        if doc is None:
            raise ResolutionError(f"No instance metadata for {instance_id!r}")
        name = doc.get(CLUSTER_NAME_KEY)
        if not isinstance(name, str) or not name:
            raise ResolutionError(
                f"{CLUSTER_NAME_KEY} not found in instance metadata for {instance_id!r}"
            )
        return name

    def dashboard_url(self, group_id: str, cluster_name: str) -> str:
        return dashboard_url(self._base_url, group_id, cluster_name)


def dashboard_url(base_url: str, group_id: str, cluster_name: str) -> str:
    """URL of a cluster's page in the Atlas UI."""
    base = base_url.rstrip("/")
    return f"{base}/v2/{group_id}#clusters/detail/{cluster_name}"
