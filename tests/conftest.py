"""Shared fixtures: credentials, a fake provider source and plan templates."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import ANY_PROVIDER, AWS_SMALL, NO_SIZE, PARAM_PROJECT, FakeProviderSource, write_templates

from atlas_broker.models import Credentials


@pytest.fixture()
def source() -> FakeProviderSource:
    return FakeProviderSource()


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials.model_validate({
        "broker": {"username": "admin", "password": "secret"},
        "projects": {
            "p1": {"publicKey": "pub1", "privateKey": "priv1", "desc": "alpha"},
            "p2": {"publicKey": "pub2", "privateKey": "priv2"},
        },
        "orgs": {
            "org1": {"publicKey": "orgpub", "privateKey": "orgpriv", "desc": "main org"},
        },
    })


@pytest.fixture()
def template_dir(tmp_path: Path) -> Path:
    return write_templates(tmp_path / "plans", {
        "01-aws-small": AWS_SMALL,
        "02-anywhere": ANY_PROVIDER,
        "03-broken": NO_SIZE,
        "04-param-project": PARAM_PROJECT,
    })
