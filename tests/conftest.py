"""Shared fixtures: an installation record and a development environment."""

import pytest

from relaypake.protocol.constants import ENV_INSTALLATION, ENV_PEPPER, TRIO_NAMES
from relaypake.protocol.envelope import Envelope, encode
from relaypake.protocol.shapes import AppCredentials, Installation, Installed

from fakes import SHARED


@pytest.fixture
def app_credentials():
    return AppCredentials(id="4242", client_id="Iv1.client", client_secret="shh", pem="-----PEM-----")


@pytest.fixture
def installation(app_credentials):
    return Installation(
        installed=Installed(token="ghs_installed", expires_at="2030-01-01T00:00:00Z"),
        shared=SHARED,
        app=app_credentials,
    )


@pytest.fixture
def dev_environ(installation):
    environ = {
        "REMOTE": "octo/relay",
        "DEPLOYMENT": "DEVELOPMENT",
        ENV_PEPPER: "pepper-for-tests",
        ENV_INSTALLATION: encode(Envelope("", installation.to_tree())),
    }
    for name, value in zip(TRIO_NAMES, ("srv-1", "cli-1", "sec-1")):
        environ[name] = value
    return environ
