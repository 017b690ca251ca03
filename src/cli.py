# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Jenkins plugin command line: status, connection test, credential setup and logout."""

import argparse
import json
import logging
import typing
from pathlib import Path

import jenkins
import state
from exceptions import ValidationError
from keychain import CredentialStore, Credentials

logger = logging.getLogger(__name__)

CONFIG_HINT = (
    "Add baseUrl to the jenkins plugin configuration, "
    'e.g. {"baseUrl": "https://jenkins.company.com"}'
)


def _build_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    Returns:
        The parser.
    """
    parser = argparse.ArgumentParser(prog="openclaw-jenkins", description="Jenkins integration")
    parser.add_argument("--config", default=None, help="JSON file with the plugin configuration")
    parser.add_argument("--url", default=None, help="Jenkins server URL, overrides the config")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show Jenkins plugin configuration status")
    commands.add_parser("test", help="Test Jenkins connection")
    setup = commands.add_parser("setup", help="Store Jenkins credentials in the keychain")
    setup.add_argument("--user", required=True, help="Jenkins username")
    setup.add_argument("--token", required=True, help="Jenkins API token")
    commands.add_parser("logout", help="Remove Jenkins credentials from the keychain")
    return parser


def _load_config(path: typing.Optional[str], url: typing.Optional[str]) -> state.Configuration:
    """Load the plugin configuration.

    Args:
        path: The JSON configuration file, if any.
        url: The server URL overriding the file value.

    Returns:
        The resolved configuration.

    Raises:
        ValidationError: if the file can not be read or holds invalid values.
    """
    raw: typing.Any = {}
    if path:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ValidationError("config", f"cannot read {path}: {exc}") from exc
    if url:
        raw = {**(raw if isinstance(raw, dict) else {}), "baseUrl": url}
    return state.resolve(raw)


def _print_json(payload: typing.Mapping[str, typing.Any]) -> None:
    """Print a JSON document to standard output.

    Args:
        payload: The document.
    """
    print(json.dumps(payload, indent=2))  # noqa: T201


def show_status(config: state.Configuration, store: CredentialStore) -> int:
    """Show the plugin configuration status.

    Args:
        config: The plugin configuration.
        store: The credential store.

    Returns:
        The exit code.
    """
    credentials_stored = store.exists(config.account_name)
    _print_json(
        {
            "configured": bool(config.server_url and credentials_stored),
            "baseUrl": config.server_url,
            "account": config.account_name,
            "credentialsStored": credentials_stored,
            "allowedParameters": list(config.allowed_mutable_parameters),
            "auditLog": config.audit_enabled,
        }
    )
    return 0


def check_connection(config: state.Configuration, store: CredentialStore) -> int:
    """Test the connection to Jenkins.

    Args:
        config: The plugin configuration.
        store: The credential store.

    Returns:
        The exit code.
    """
    if not config.server_url:
        logger.error("Jenkins baseUrl not configured. %s", CONFIG_HINT)
        return 1
    credentials = store.read(config.account_name)
    if not credentials:
        logger.error("No Jenkins credentials found, run the setup command first.")
        return 1

    logger.info("Testing connection to %s...", config.server_url)
    result = jenkins.JenkinsClient(config, credentials).test_connection()
    report = {"url": config.server_url, "account": config.account_name}
    if result.ok:
        _print_json({"status": "ok", **report, "version": result.version})
        return 0
    _print_json({"status": "error", **report, "error": result.error})
    return 1


def store_credentials(
    config: state.Configuration, store: CredentialStore, user: str, token: str
) -> int:
    """Store the Jenkins credentials and test them.

    Args:
        config: The plugin configuration.
        store: The credential store.
        user: The Jenkins username.
        token: The Jenkins API token.

    Returns:
        The exit code.
    """
    if not config.server_url:
        logger.error("Jenkins URL is required. %s", CONFIG_HINT)
        return 1
    if not user.strip() or not token.strip():
        logger.error("Username and API token are required.")
        return 1

    account = config.account_name
    if not store.write(Credentials(principal=user.strip(), secret=token.strip()), account):
        logger.error("Failed to save credentials to the keychain.")
        logger.info("Note: keychain storage is only supported on macOS.")
        return 1
    logger.info("Credentials saved to the keychain (account: %s)", account)

    credentials = store.read(account)
    if not credentials:
        logger.error("Failed to read back credentials.")
        return 1
    logger.info("Testing connection...")
    result = jenkins.JenkinsClient(config, credentials).test_connection()
    if result.ok:
        logger.info("Connection successful%s", f" ({result.version})" if result.version else "")
    else:
        logger.warning("Connection test failed: %s", result.error)
        logger.info("Credentials were saved, but you may need to verify them.")
    return 0


def remove_credentials(config: state.Configuration, store: CredentialStore) -> int:
    """Remove the stored Jenkins credentials.

    Args:
        config: The plugin configuration.
        store: The credential store.

    Returns:
        The exit code.
    """
    account = config.account_name
    if not store.exists(account):
        logger.info("No credentials found in the keychain.")
        return 0
    if not store.delete(account):
        logger.error("Failed to remove credentials from the keychain.")
        return 1
    logger.info("Credentials removed from the keychain (account: %s)", account)
    return 0


def main(
    argv: typing.Optional[typing.Sequence[str]] = None,
    store: typing.Optional[CredentialStore] = None,
) -> int:
    """Run the Jenkins command line.

    Args:
        argv: The command line arguments, sys.argv by default.
        store: The credential store, environment and platform keychain by default.

    Returns:
        The exit code.
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(message)s")
    try:
        config = _load_config(args.config, args.url)
    except ValidationError as exc:
        logger.error("%s", exc)
        return 1

    store = CredentialStore() if store is None else store
    if args.command == "status":
        return show_status(config, store)
    if args.command == "test":
        return check_connection(config, store)
    if args.command == "setup":
        return store_credentials(config, store, args.user, args.token)
    return remove_credentials(config, store)
