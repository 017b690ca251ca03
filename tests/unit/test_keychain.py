# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Jenkins credentials storage tests."""
import json
import subprocess  # nosec B404
import typing
import unittest.mock

import pytest

import keychain
from exceptions import KeychainError

from .constants import JENKINS_USER, KEYCHAIN_NOT_FOUND
from .helpers import completed, security_error

STORED = keychain.Credentials(principal=JENKINS_USER, secret="secret123")


@pytest.mark.parametrize(
    "payload",
    [
        pytest.param("not json", id="invalid json"),
        pytest.param('["admin", "secret"]', id="not an object"),
        pytest.param('{"secret": "secret123"}', id="principal missing"),
        pytest.param('{"principal": "admin", "secret": ""}', id="secret empty"),
        pytest.param('{"principal": 1, "secret": "secret123"}', id="principal not a string"),
    ],
)
def test_credentials_from_json_invalid(payload: str):
    """
    arrange: given a malformed keychain payload.
    act: when credentials are loaded from it.
    assert: None is returned.
    """
    assert keychain.Credentials.from_json(payload) is None


def test_credentials_from_json():
    """
    arrange: given a keychain payload with a trailing newline.
    act: when credentials are loaded from it.
    assert: the credentials are returned.
    """
    assert keychain.Credentials.from_json(f"{STORED.to_json()}\n") == STORED


@pytest.mark.parametrize(
    "environ, expected",
    [
        pytest.param({}, None, id="unset"),
        pytest.param({keychain.USER_ENV: JENKINS_USER}, None, id="token unset"),
        pytest.param(
            {keychain.USER_ENV: JENKINS_USER, keychain.TOKEN_ENV: "  "}, None, id="token blank"
        ),
        pytest.param(
            {keychain.USER_ENV: f" {JENKINS_USER} ", keychain.TOKEN_ENV: "env-token\n"},
            keychain.Credentials(principal=JENKINS_USER, secret="env-token"),
            id="set",
        ),
    ],
)
def test_environment_provider(
    environ: dict[str, str], expected: typing.Optional[keychain.Credentials]
):
    """
    arrange: given environment variables.
    act: when the environment provider is read.
    assert: trimmed credentials are returned only when both variables are non-blank.
    """
    assert keychain.EnvironmentProvider(environ).read() == expected


def test_environment_provider_default(monkeypatch: pytest.MonkeyPatch):
    """
    arrange: given the Jenkins variables in the process environment.
    act: when a provider without an explicit mapping is read.
    assert: the process environment credentials are returned.
    """
    monkeypatch.setenv(keychain.USER_ENV, JENKINS_USER)
    monkeypatch.setenv(keychain.TOKEN_ENV, "env-token")

    assert keychain.EnvironmentProvider().read() == keychain.Credentials(
        principal=JENKINS_USER, secret="env-token"
    )


@pytest.mark.parametrize(
    "platform, backend_type",
    [
        pytest.param("darwin", keychain.MacKeychainBackend, id="macOS"),
        pytest.param("linux", keychain.UnsupportedBackend, id="linux"),
        pytest.param("win32", keychain.UnsupportedBackend, id="windows"),
    ],
)
def test_get_backend(platform: str, backend_type: type):
    """
    arrange: given a platform tag.
    act: when the vault backend is selected.
    assert: the keychain backend is used on macOS only.
    """
    assert isinstance(keychain.get_backend(platform), backend_type)


def test_read_from_keychain(
    keychain_store: keychain.CredentialStore, mock_run: unittest.mock.MagicMock
):
    """
    arrange: given credentials stored in the keychain.
    act: when the credentials of an account are read.
    assert: the security command is called for the account and the credentials returned.
    """
    mock_run.return_value = completed(STORED.to_json())

    credentials = keychain_store.read("work")

    assert credentials == STORED
    mock_run.assert_called_once_with(
        [
            "security",
            "find-generic-password",
            "-s",
            keychain.KEYCHAIN_SERVICE,
            "-a",
            "work",
            "-w",
        ],
        capture_output=True,
        text=True,
        timeout=keychain.KEYCHAIN_TIMEOUT,
        check=True,
    )


def test_environment_precedes_keychain(mock_run: unittest.mock.MagicMock):
    """
    arrange: given credentials both in the environment and in the keychain.
    act: when the credentials are read.
    assert: the environment credentials are returned without calling the keychain.
    """
    mock_run.return_value = completed(STORED.to_json())
    store = keychain.CredentialStore(
        providers=[
            keychain.EnvironmentProvider(
                {keychain.USER_ENV: "env-user", keychain.TOKEN_ENV: "env-token"}
            )
        ],
        backend=keychain.MacKeychainBackend(run=mock_run),
    )

    credentials = store.read()

    assert credentials == keychain.Credentials(principal="env-user", secret="env-token")
    mock_run.assert_not_called()


@pytest.mark.parametrize(
    "side_effect",
    [
        pytest.param(security_error(KEYCHAIN_NOT_FOUND), id="item not found"),
        pytest.param(subprocess.TimeoutExpired(["security"], 5), id="timeout"),
        pytest.param(FileNotFoundError("security"), id="command missing"),
        pytest.param(None, id="malformed payload"),
    ],
)
def test_read_failure(
    keychain_store: keychain.CredentialStore,
    mock_run: unittest.mock.MagicMock,
    side_effect: typing.Optional[Exception],
):
    """
    arrange: given a keychain lookup that fails or returns a malformed payload.
    act: when the credentials are read.
    assert: None is returned.
    """
    mock_run.return_value = completed("not json")
    mock_run.side_effect = side_effect

    assert keychain_store.read() is None


def test_unsupported_platform(unsupported_store: keychain.CredentialStore):
    """
    arrange: given a platform without keychain and an empty environment.
    act: when credentials are read, written, deleted and checked.
    assert: every operation reports no credentials.
    """
    assert unsupported_store.read() is None
    assert not unsupported_store.write(STORED)
    assert not unsupported_store.delete()
    assert not unsupported_store.exists()


def test_unsupported_platform_environment():
    """
    arrange: given a platform without keychain and credentials in the environment.
    act: when credentials are read and checked.
    assert: the environment credentials are available.
    """
    store = keychain.CredentialStore(
        providers=[
            keychain.EnvironmentProvider(
                {keychain.USER_ENV: JENKINS_USER, keychain.TOKEN_ENV: "env-token"}
            )
        ],
        platform="linux",
    )

    assert store.read() == keychain.Credentials(principal=JENKINS_USER, secret="env-token")
    assert store.exists()


def test_unsupported_backend_raises():
    """
    arrange: given the backend of a platform without keychain.
    act: when an item is looked up.
    assert: KeychainError is raised.
    """
    with pytest.raises(KeychainError):
        keychain.UnsupportedBackend().find("default")


def test_write(keychain_store: keychain.CredentialStore, mock_run: unittest.mock.MagicMock):
    """
    arrange: given a working keychain.
    act: when credentials are written.
    assert: the item is created or replaced with the JSON payload.
    """
    mock_run.return_value = completed()

    assert keychain_store.write(STORED, "work")

    command = mock_run.call_args.args[0]
    assert command[:7] == [
        "security",
        "add-generic-password",
        "-U",
        "-s",
        keychain.KEYCHAIN_SERVICE,
        "-a",
        "work",
    ]
    assert command[7] == "-w"
    assert json.loads(command[8]) == {"principal": JENKINS_USER, "secret": "secret123"}


def test_write_failure(
    keychain_store: keychain.CredentialStore, mock_run: unittest.mock.MagicMock
):
    """
    arrange: given a keychain refusing the item.
    act: when credentials are written.
    assert: False is returned.
    """
    mock_run.side_effect = security_error("security: User interaction is not allowed.")

    assert not keychain_store.write(STORED)


def test_write_then_read(mock_run: unittest.mock.MagicMock):
    """
    arrange: given a keychain remembering the last stored payload.
    act: when credentials are written then read back.
    assert: the same credentials are returned.
    """
    items: dict[str, str] = {}

    def security(command: list[str], **_kwargs: typing.Any) -> subprocess.CompletedProcess:
        """Emulate the security command.

        Args:
            command: The command line.

        Returns:
            The command result.
        """
        account = command[command.index("-a") + 1]
        if command[1] == "add-generic-password":
            items[account] = command[command.index("-w") + 1]
            return completed()
        return completed(items[account])

    mock_run.side_effect = security
    store = keychain.CredentialStore(
        providers=[], backend=keychain.MacKeychainBackend(run=mock_run)
    )

    assert store.write(STORED, "work")
    assert store.read("work") == STORED


def test_delete_is_idempotent(
    keychain_store: keychain.CredentialStore, mock_run: unittest.mock.MagicMock
):
    """
    arrange: given a keychain item that is removed by the first delete.
    act: when the credentials are deleted twice.
    assert: both deletes succeed.
    """
    mock_run.side_effect = [completed(), security_error(KEYCHAIN_NOT_FOUND)]

    assert keychain_store.delete()
    assert keychain_store.delete()
    mock_run.assert_called_with(
        ["security", "delete-generic-password", "-s", keychain.KEYCHAIN_SERVICE, "-a", "default"],
        capture_output=True,
        text=True,
        timeout=keychain.KEYCHAIN_TIMEOUT,
        check=True,
    )


def test_delete_failure(
    keychain_store: keychain.CredentialStore, mock_run: unittest.mock.MagicMock
):
    """
    arrange: given a keychain failing for a reason other than a missing item.
    act: when the credentials are deleted.
    assert: False is returned.
    """
    mock_run.side_effect = security_error("security: The user name or passphrase was incorrect.")

    assert not keychain_store.delete()


@pytest.mark.parametrize(
    "side_effect, expected",
    [
        pytest.param(None, True, id="item found"),
        pytest.param(security_error(KEYCHAIN_NOT_FOUND), False, id="item not found"),
    ],
)
def test_exists(
    keychain_store: keychain.CredentialStore,
    mock_run: unittest.mock.MagicMock,
    side_effect: typing.Optional[Exception],
    expected: bool,
):
    """
    arrange: given a keychain lookup result.
    act: when the existence of credentials is checked.
    assert: the item attributes are looked up without the payload.
    """
    mock_run.return_value = completed('keychain: "login.keychain-db"')
    mock_run.side_effect = side_effect

    assert keychain_store.exists() is expected
    assert "-w" not in mock_run.call_args.args[0]


def test_module_functions_unsupported_platform(monkeypatch: pytest.MonkeyPatch):
    """
    arrange: given a platform without keychain and no environment credentials.
    act: when the module level credential functions are called.
    assert: no credentials are reported.
    """
    monkeypatch.delenv(keychain.USER_ENV, raising=False)
    monkeypatch.delenv(keychain.TOKEN_ENV, raising=False)

    assert keychain.read_credentials(platform="linux") is None
    assert not keychain.write_credentials(STORED, platform="linux")
    assert not keychain.delete_credentials(platform="linux")
    assert not keychain.has_credentials(platform="linux")


def test_module_functions_macos(monkeypatch: pytest.MonkeyPatch):
    """
    arrange: given macOS with the security command succeeding.
    act: when the module level credential functions are called.
    assert: the keychain results are reported.
    """
    monkeypatch.delenv(keychain.USER_ENV, raising=False)
    monkeypatch.delenv(keychain.TOKEN_ENV, raising=False)
    mock_run = unittest.mock.MagicMock(return_value=completed(STORED.to_json()))
    monkeypatch.setattr(keychain.subprocess, "run", mock_run)

    assert keychain.read_credentials(platform="darwin") == STORED
    assert keychain.write_credentials(STORED, platform="darwin")
    assert keychain.delete_credentials(platform="darwin")
    assert keychain.has_credentials(platform="darwin")
