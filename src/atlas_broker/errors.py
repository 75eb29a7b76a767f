"""Error taxonomy for the broker.

Four families, each with a different blast radius:

- ``ConfigurationError``: fatal at startup (unsupported mode, bad files).
- ``TemplateFault``: scoped to one plan template; the catalog builder logs
  and skips the template.
- ``BackendFetchError``: provider metadata unavailable; catalog
  construction aborts and nothing is published.
- ``ResolutionError``: per-request; the operation for that instance is
  rejected and the broker stays available.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for every error raised by the broker."""


class ConfigurationError(BrokerError):
    """Raised when the broker configuration cannot be used."""


# --- Template faults ---


class TemplateFault(BrokerError):
    """Raised when a plan template cannot be turned into a plan."""

    def __init__(self, message: str, template_name: str = "") -> None:
        super().__init__(message)
        self.template_name = template_name


class TemplateLoadError(TemplateFault):
    """The template source is missing, unreadable or not valid Jinja."""


class TemplateRenderError(TemplateFault):
    """Variable substitution failed (undefined field, missing key)."""


class TemplateDecodeError(TemplateFault):
    """The rendered text is not a well-formed plan document."""


class TemplateValidationError(TemplateFault):
    """The decoded plan is missing a required field."""


# --- Backend ---


class BackendFetchError(BrokerError):
    """Raised when provider metadata cannot be fetched during catalog build."""


# --- Resolution faults ---


class ResolutionError(BrokerError):
    """Raised when a request cannot be mapped to a tenant."""


class TenantNotFound(ResolutionError):
    """The resolved project ID has no credentials entry."""


class MissingTenantReference(ResolutionError):
    """A new instance did not declare which project to use."""


class UnknownPlan(ResolutionError):
    """The plan ID is not present in the catalog."""


class InvalidParameters(ResolutionError):
    """The request parameters are not a JSON object."""


class InvalidCredentials(ResolutionError):
    """Request credentials could not be parsed."""
