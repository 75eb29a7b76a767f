"""atlas-broker CLI — inspect the catalog and plan templates.

Commands:
    catalog         Build the service catalog and print it
    plans validate  Render plan templates for every provider
    resolve         Resolve the project for an instance operation
    dashboard-url   Print the dashboard URL for a cluster
"""

from __future__ import annotations

import json
import logging
import sys

import click

from atlas_broker import __version__
from atlas_broker.broker import Broker, dashboard_url
from atlas_broker.catalog.builder import PROVIDER_NAMES, SHARED_PROVIDER
from atlas_broker.config import BrokerConfig, load_config, load_credentials
from atlas_broker.errors import BrokerError
from atlas_broker.models import Credentials
from atlas_broker.plans.templates import (
    TemplateContext,
    load_templates,
    plan_matches_provider,
    render,
)


def _load(ctx: click.Context) -> BrokerConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except (FileNotFoundError, BrokerError) as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)


def _broker(cfg: BrokerConfig) -> Broker:
    try:
        return Broker.from_config(cfg)
    except BrokerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to atlas-broker.yaml")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str) -> None:
    """atlas-broker: service catalog and plan resolution for Atlas clusters."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# --- catalog command ---


@cli.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
@click.pass_context
def catalog(ctx: click.Context, json_output: bool) -> None:
    """Build the service catalog and print it."""
    broker = _broker(_load(ctx))
    try:
        built = broker.catalog()
    except BrokerError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(built.to_dict(), indent=2))
        return

    for service in built.services:
        click.echo(click.style(service.name, bold=True) + f"  ({service.id})")
        for plan in service.plans:
            click.echo(f"  {plan.name:<30} {plan.id}")
    click.echo(f"\n{len(built.plans)} plan(s) in {len(built.services)} service(s).")


# --- plans commands ---


@cli.group()
def plans() -> None:
    """Plan template commands."""


@plans.command("validate")
@click.argument("template_dir", required=False)
@click.option("--credentials", "credentials_path", default=None, help="Credentials file")
@click.pass_context
def plans_validate(
    ctx: click.Context,
    template_dir: str | None,
    credentials_path: str | None,
) -> None:
    """Render every plan template once per provider, without the backend."""
    cfg = _load(ctx)
    template_dir = template_dir or cfg.templates
    credentials_path = credentials_path or cfg.credentials
    if not template_dir:
        click.echo("Error: no template directory given", err=True)
        sys.exit(1)

    try:
        templates = load_templates(template_dir)
        credentials = (
            load_credentials(credentials_path) if credentials_path else Credentials()
        )
    except BrokerError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)

    base = TemplateContext(credentials=credentials)
    failures = 0
    for template in templates:
        for provider in PROVIDER_NAMES:
            if provider == SHARED_PROVIDER:
                continue
            try:
                plan = render(template, base.for_provider(provider))
            except BrokerError as e:
                failures += 1
                click.echo(click.style("ERROR", fg="red") + f" {template.name} [{provider}]: {e}")
                continue
            if not plan_matches_provider(plan, provider):
                click.echo(click.style("SKIP ", fg="yellow") + f" {template.name} [{provider}]")
                continue
            click.echo(
                click.style("OK   ", fg="green")
                + f" {template.name} [{provider}] -> {plan.name} ({plan.instance_size_name})"
            )

    click.echo(f"\n{len(templates)} template(s), {failures} error(s).")
    if failures:
        sys.exit(1)


# --- resolve command ---


@cli.command()
@click.argument("instance_id")
@click.argument("plan_id")
@click.option("--params", default=None, help="Provisioning parameters as JSON")
@click.pass_context
def resolve(ctx: click.Context, instance_id: str, plan_id: str, params: str | None) -> None:
    """Resolve the project an instance operation would use."""
    broker = _broker(_load(ctx))
    try:
        resolution = broker.resolve_for_instance(instance_id, plan_id, params)
    except BrokerError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)
    click.echo(resolution.group_id)


# --- dashboard-url command ---


@cli.command("dashboard-url")
@click.argument("group_id")
@click.argument("cluster_name")
@click.pass_context
def dashboard_url_cmd(ctx: click.Context, group_id: str, cluster_name: str) -> None:
    """Print the dashboard URL for a cluster."""
    cfg = _load(ctx)
    click.echo(dashboard_url(cfg.base_url, group_id, cluster_name))
