"""atlas-broker: catalog and plan resolution for an Atlas service broker."""

__version__ = "0.1.0"

from atlas_broker.atlas.client import AtlasClient, AtlasError, parse_basic_auth
from atlas_broker.broker import Broker
from atlas_broker.catalog.builder import Catalog, CatalogBuilder
from atlas_broker.config import BrokerConfig, load_config, load_credentials, load_whitelist
from atlas_broker.errors import (
    BackendFetchError,
    BrokerError,
    ConfigurationError,
    InvalidParameters,
    MissingTenantReference,
    ResolutionError,
    TemplateDecodeError,
    TemplateFault,
    TemplateLoadError,
    TemplateRenderError,
    TemplateValidationError,
    TenantNotFound,
    UnknownPlan,
)
from atlas_broker.models import (
    Credentials,
    InstanceSize,
    Mode,
    Plan,
    ProjectKey,
    Provider,
    RequestAuth,
    Service,
    ServicePlan,
)
from atlas_broker.plans.templates import PlanTemplate, TemplateContext, load_templates, render
from atlas_broker.resolver import Resolution, TenantResolver
from atlas_broker.state.store import FileInstanceStore, InstanceStore, MemoryInstanceStore

__all__ = [
    "AtlasClient",
    "AtlasError",
    "BackendFetchError",
    "Broker",
    "BrokerConfig",
    "BrokerError",
    "Catalog",
    "CatalogBuilder",
    "ConfigurationError",
    "Credentials",
    "FileInstanceStore",
    "InstanceSize",
    "InstanceStore",
    "InvalidParameters",
    "load_config",
    "load_credentials",
    "load_templates",
    "load_whitelist",
    "MemoryInstanceStore",
    "MissingTenantReference",
    "Mode",
    "parse_basic_auth",
    "Plan",
    "PlanTemplate",
    "ProjectKey",
    "Provider",
    "render",
    "RequestAuth",
    "Resolution",
    "ResolutionError",
    "Service",
    "ServicePlan",
    "TemplateContext",
    "TemplateDecodeError",
    "TemplateFault",
    "TemplateLoadError",
    "TemplateRenderError",
    "TemplateValidationError",
    "TenantNotFound",
    "TenantResolver",
    "UnknownPlan",
    "__version__",
]
