# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Exceptions raised by the Jenkins client and its tools."""

import typing


class JenkinsError(Exception):
    """Base exception for Jenkins errors."""


class ValidationError(JenkinsError):
    """Invalid plugin configuration input was encountered.

    Attributes:
        field: The configuration key holding the invalid value.
    """

    def __init__(self, field: str, msg: str):
        """Initialize a new instance of the ValidationError exception.

        Args:
            field: The configuration key holding the invalid value.
            msg: Explanation of the error.
        """
        super().__init__(f"Invalid configuration value for {field}: {msg}")
        self.field = field


class ConfigurationError(JenkinsError):
    """The configuration is missing a value required to reach Jenkins."""


class TransportError(JenkinsError):
    """The request to Jenkins failed or timed out before a response was received."""


class ApiError(JenkinsError):
    """Jenkins answered with a non-successful status code.

    Attributes:
        status: The HTTP status code.
        body: Up to 200 characters of the response body.
    """

    def __init__(self, status: int, reason: str = "", body: str = ""):
        """Initialize a new instance of the ApiError exception.

        Args:
            status: The HTTP status code.
            reason: The HTTP reason phrase.
            body: The response body, truncated for diagnostics.
        """
        self.status = status
        self.body = body[:200]
        message = f"Jenkins API error: {status} {reason}".rstrip()
        if self.body:
            message = f"{message} - {self.body}"
        super().__init__(message)


class NotFoundError(JenkinsError):
    """The targeted job parameter does not exist in the job configuration."""


class AuthorizationError(JenkinsError):
    """A parameter outside of the allowed whitelist was requested to change.

    Attributes:
        parameter: The denied parameter name.
        allowed: The whitelisted parameter names.
    """

    def __init__(self, parameter: str, allowed: typing.Iterable[str]):
        """Initialize a new instance of the AuthorizationError exception.

        Args:
            parameter: The denied parameter name.
            allowed: The whitelisted parameter names.
        """
        self.parameter = parameter
        self.allowed = tuple(allowed)
        super().__init__(
            f'Parameter "{parameter}" is not in the allowed parameters whitelist. '
            f"Allowed: {', '.join(self.allowed) or '(none)'}"
        )


class InvalidToolInputError(JenkinsError):
    """A tool was invoked with a missing or ill-typed input.

    Attributes:
        field: The offending tool input name.
    """

    def __init__(self, field: str, msg: str):
        """Initialize a new instance of the InvalidToolInputError exception.

        Args:
            field: The offending tool input name.
            msg: Explanation of the error.
        """
        super().__init__(msg)
        self.field = field


class KeychainError(Exception):
    """The platform secret vault command failed."""
