# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Jenkins credentials storage backed by environment variables and the macOS keychain."""

import dataclasses
import json
import logging
import os
import subprocess  # nosec B404
import sys
import typing

from exceptions import KeychainError

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "OpenClaw Jenkins"
DEFAULT_ACCOUNT = "default"
USER_ENV = "JENKINS_USER"
TOKEN_ENV = "JENKINS_TOKEN"  # nosec
# The platform tag of the only supported vault
KEYCHAIN_PLATFORM = "darwin"
SECURITY_COMMAND = "security"
# Seconds to wait for the security command
KEYCHAIN_TIMEOUT = 5
# Messages printed by security when the keychain item does not exist
NOT_FOUND_MARKERS = ("could not be found", "SecKeychainSearchCopyNext")


@dataclasses.dataclass(frozen=True)
class Credentials:
    """Information needed to log into Jenkins.

    Attributes:
        principal: The Jenkins account username.
        secret: The Jenkins API token or account password.
    """

    principal: str
    secret: str

    def to_json(self) -> str:
        """Serialize the credentials for keychain storage.

        Returns:
            The JSON payload.
        """
        return json.dumps({"principal": self.principal, "secret": self.secret})

    @classmethod
    def from_json(cls, payload: str) -> typing.Optional["Credentials"]:
        """Instantiate the credentials from a keychain payload.

        Args:
            payload: The JSON payload stored in the keychain.

        Returns:
            Credentials if both principal and secret are non-empty strings, None otherwise.
        """
        try:
            data = json.loads(payload.strip())
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        principal = data.get("principal")
        secret = data.get("secret")
        if not isinstance(principal, str) or not principal:
            return None
        if not isinstance(secret, str) or not secret:
            return None
        return cls(principal=principal, secret=secret)


class CredentialProvider(typing.Protocol):  # pylint: disable=too-few-public-methods
    """A source of credentials consulted before the keychain."""

    def read(self) -> typing.Optional[Credentials]:
        """Read the credentials."""


class EnvironmentProvider:  # pylint: disable=too-few-public-methods
    """Credentials from the JENKINS_USER and JENKINS_TOKEN environment variables."""

    def __init__(self, environ: typing.Optional[typing.Mapping[str, str]] = None):
        """Construct the provider.

        Args:
            environ: The environment mapping to read from, os.environ by default.
        """
        self.environ = os.environ if environ is None else environ

    def read(self) -> typing.Optional[Credentials]:
        """Read the credentials from the environment.

        Returns:
            Credentials if both variables are set and non-blank, None otherwise.
        """
        principal = (self.environ.get(USER_ENV) or "").strip()
        secret = (self.environ.get(TOKEN_ENV) or "").strip()
        if principal and secret:
            return Credentials(principal=principal, secret=secret)
        return None


class VaultBackend(typing.Protocol):
    """A platform secret vault holding one item per account."""

    supported: bool

    def find(self, account: str, with_payload: bool = True) -> str:
        """Look up the item of an account."""

    def upsert(self, account: str, payload: str) -> None:
        """Create or replace the item of an account."""

    def delete(self, account: str) -> None:
        """Delete the item of an account."""


class UnsupportedBackend:
    """Vault stand-in for platforms without a keychain."""

    supported = False

    def find(self, account: str, with_payload: bool = True) -> str:
        """Look up the item of an account.

        Args:
            account: The keychain account name.
            with_payload: Whether the stored payload is requested.

        Raises:
            KeychainError: always, the platform has no keychain.
        """
        raise KeychainError(f"Keychain is not supported on this platform ({account}).")

    def upsert(self, account: str, payload: str) -> None:
        """Create or replace the item of an account.

        Args:
            account: The keychain account name.
            payload: The payload to store.

        Raises:
            KeychainError: always, the platform has no keychain.
        """
        del payload
        raise KeychainError(f"Keychain is not supported on this platform ({account}).")

    def delete(self, account: str) -> None:
        """Delete the item of an account.

        Args:
            account: The keychain account name.

        Raises:
            KeychainError: always, the platform has no keychain.
        """
        raise KeychainError(f"Keychain is not supported on this platform ({account}).")


class MacKeychainBackend:
    """Generic password items in the macOS login keychain, managed by security(1).

    Attrs:
        service: The keychain service name of the items.
        supported: Whether the backend can store items.
    """

    supported = True

    def __init__(
        self,
        service: str = KEYCHAIN_SERVICE,
        run: typing.Optional[typing.Callable[..., subprocess.CompletedProcess]] = None,
    ):
        """Construct the backend.

        Args:
            service: The keychain service name of the items.
            run: The function used to execute the security command, subprocess.run by default.
        """
        self.service = service
        self._run = run

    def _security(self, *args: str) -> str:
        """Execute a security subcommand.

        Args:
            args: The subcommand and its arguments.

        Returns:
            The standard output of the command.

        Raises:
            KeychainError: if the command could not run or exited with an error.
        """
        command = [SECURITY_COMMAND, *args]
        try:
            proc = (self._run or subprocess.run)(
                command,
                capture_output=True,
                text=True,
                timeout=KEYCHAIN_TIMEOUT,
                check=True,
            )  # nosec B603
        except subprocess.CalledProcessError as exc:
            raise KeychainError(f"{args[0]} failed: {(exc.stderr or '').strip()}") from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise KeychainError(f"{args[0]} failed: {exc}") from exc
        return proc.stdout

    def find(self, account: str, with_payload: bool = True) -> str:
        """Look up the item of an account.

        Args:
            account: The keychain account name.
            with_payload: Whether to print the stored password.

        Returns:
            The stored payload, or the item attributes when with_payload is False.
        """
        args = ["find-generic-password", "-s", self.service, "-a", account]
        if with_payload:
            args.append("-w")
        return self._security(*args)

    def upsert(self, account: str, payload: str) -> None:
        """Create or replace the item of an account.

        Args:
            account: The keychain account name.
            payload: The payload to store as the item password.
        """
        self._security(
            "add-generic-password", "-U", "-s", self.service, "-a", account, "-w", payload
        )

    def delete(self, account: str) -> None:
        """Delete the item of an account.

        Args:
            account: The keychain account name.
        """
        self._security("delete-generic-password", "-s", self.service, "-a", account)


def get_backend(platform: typing.Optional[str] = None) -> VaultBackend:
    """Select the vault backend of a platform.

    Args:
        platform: The platform tag, sys.platform by default.

    Returns:
        The keychain backend on macOS, an unsupported backend elsewhere.
    """
    platform = sys.platform if platform is None else platform
    if platform == KEYCHAIN_PLATFORM:
        return MacKeychainBackend()
    return UnsupportedBackend()


class CredentialStore:
    """Account scoped Jenkins credentials.

    Providers are consulted in order before the vault. Credentials are never cached, each
    read goes back to the sources.

    Attrs:
        providers: The credential providers tried before the vault.
        backend: The platform vault backend.
    """

    def __init__(
        self,
        providers: typing.Optional[typing.Sequence[CredentialProvider]] = None,
        backend: typing.Optional[VaultBackend] = None,
        platform: typing.Optional[str] = None,
    ):
        """Construct the store.

        Args:
            providers: The credential providers, the environment by default.
            backend: The vault backend, selected from the platform by default.
            platform: The platform tag used to select the backend.
        """
        self.providers: typing.Sequence[CredentialProvider] = (
            [EnvironmentProvider()] if providers is None else providers
        )
        self.backend = get_backend(platform) if backend is None else backend

    def _from_providers(self) -> typing.Optional[Credentials]:
        """Read credentials from the first provider that has them.

        Returns:
            The provider credentials if any provider has them, None otherwise.
        """
        for provider in self.providers:
            credentials = provider.read()
            if credentials:
                return credentials
        return None

    def read(self, account: str = DEFAULT_ACCOUNT) -> typing.Optional[Credentials]:
        """Read the Jenkins credentials.

        Args:
            account: The keychain account name.

        Returns:
            The credentials, or None if no source has valid ones.
        """
        credentials = self._from_providers()
        if credentials:
            return credentials
        if not self.backend.supported:
            return None
        try:
            payload = self.backend.find(account)
        except KeychainError as exc:
            logger.debug("No keychain credentials for account %s, %s", account, exc)
            return None
        credentials = Credentials.from_json(payload)
        if not credentials:
            logger.debug("Malformed keychain credentials for account %s", account)
        return credentials

    def write(self, credentials: Credentials, account: str = DEFAULT_ACCOUNT) -> bool:
        """Store the Jenkins credentials, replacing existing ones.

        Args:
            credentials: The credentials to store.
            account: The keychain account name.

        Returns:
            True if the credentials were stored, False otherwise.
        """
        if not self.backend.supported:
            return False
        try:
            self.backend.upsert(account, credentials.to_json())
        except KeychainError as exc:
            logger.debug("Failed to store keychain credentials for account %s, %s", account, exc)
            return False
        return True

    def delete(self, account: str = DEFAULT_ACCOUNT) -> bool:
        """Remove the stored Jenkins credentials.

        Args:
            account: The keychain account name.

        Returns:
            True if the credentials were removed or were not stored, False otherwise.
        """
        if not self.backend.supported:
            return False
        try:
            self.backend.delete(account)
        except KeychainError as exc:
            if any(marker in str(exc) for marker in NOT_FOUND_MARKERS):
                return True
            logger.debug("Failed to delete keychain credentials for account %s, %s", account, exc)
            return False
        return True

    def exists(self, account: str = DEFAULT_ACCOUNT) -> bool:
        """Check whether Jenkins credentials are available.

        Args:
            account: The keychain account name.

        Returns:
            True if a provider or the keychain has credentials, False otherwise.
        """
        if self._from_providers():
            return True
        if not self.backend.supported:
            return False
        try:
            self.backend.find(account, with_payload=False)
        except KeychainError:
            return False
        return True


def read_credentials(
    account: str = DEFAULT_ACCOUNT, platform: typing.Optional[str] = None
) -> typing.Optional[Credentials]:
    """Read the Jenkins credentials from the environment or keychain.

    Args:
        account: The keychain account name.
        platform: The platform tag, sys.platform by default.

    Returns:
        The credentials, or None if none are available.
    """
    return CredentialStore(platform=platform).read(account)


def write_credentials(
    credentials: Credentials,
    account: str = DEFAULT_ACCOUNT,
    platform: typing.Optional[str] = None,
) -> bool:
    """Store the Jenkins credentials in the keychain.

    Args:
        credentials: The credentials to store.
        account: The keychain account name.
        platform: The platform tag, sys.platform by default.

    Returns:
        True if the credentials were stored, False otherwise.
    """
    return CredentialStore(platform=platform).write(credentials, account)


def delete_credentials(
    account: str = DEFAULT_ACCOUNT, platform: typing.Optional[str] = None
) -> bool:
    """Remove the Jenkins credentials from the keychain.

    Args:
        account: The keychain account name.
        platform: The platform tag, sys.platform by default.

    Returns:
        True if removed or already absent, False otherwise.
    """
    return CredentialStore(platform=platform).delete(account)


def has_credentials(
    account: str = DEFAULT_ACCOUNT, platform: typing.Optional[str] = None
) -> bool:
    """Check whether Jenkins credentials are available.

    Args:
        account: The keychain account name.
        platform: The platform tag, sys.platform by default.

    Returns:
        True if credentials are available, False otherwise.
    """
    return CredentialStore(platform=platform).exists(account)
