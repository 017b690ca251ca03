# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Fixtures for the Jenkins plugin unit tests."""

import unittest.mock
from secrets import token_hex

import pytest
import requests

import jenkins
import keychain
import state

from .constants import ALLOWED_PARAMETER, JENKINS_USER, SERVER_URL


@pytest.fixture(scope="function", name="config")
def config_fixture() -> state.Configuration:
    """Plugin configuration with a server URL and a single whitelisted parameter."""
    return state.resolve({"baseUrl": SERVER_URL, "allowedParameters": [ALLOWED_PARAMETER]})


@pytest.fixture(scope="function", name="credentials")
def credentials_fixture() -> keychain.Credentials:
    """Jenkins user credentials."""
    return keychain.Credentials(principal=JENKINS_USER, secret=token_hex(16))


@pytest.fixture(scope="function", name="client")
def client_fixture(
    config: state.Configuration, credentials: keychain.Credentials
) -> jenkins.JenkinsClient:
    """Jenkins API client."""
    return jenkins.JenkinsClient(config, credentials)


@pytest.fixture(scope="function", name="mock_request")
def mock_request_fixture(monkeypatch: pytest.MonkeyPatch) -> unittest.mock.MagicMock:
    """Mock the requests function used to call Jenkins."""
    mock_request = unittest.mock.MagicMock(spec=requests.request)
    monkeypatch.setattr(requests, "request", mock_request)
    return mock_request


@pytest.fixture(scope="function", name="mock_run")
def mock_run_fixture() -> unittest.mock.MagicMock:
    """Mock the subprocess runner executing the security command."""
    return unittest.mock.MagicMock()


@pytest.fixture(scope="function", name="keychain_store")
def keychain_store_fixture(mock_run: unittest.mock.MagicMock) -> keychain.CredentialStore:
    """Credential store with an empty environment and a mocked macOS keychain."""
    return keychain.CredentialStore(
        providers=[keychain.EnvironmentProvider({})],
        backend=keychain.MacKeychainBackend(run=mock_run),
    )


@pytest.fixture(scope="function", name="unsupported_store")
def unsupported_store_fixture() -> keychain.CredentialStore:
    """Credential store with an empty environment on a platform without keychain."""
    return keychain.CredentialStore(
        providers=[keychain.EnvironmentProvider({})], platform="linux"
    )
