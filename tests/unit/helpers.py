# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Helper functions used to unit test the Jenkins plugin."""

import json
import subprocess  # nosec B404
import typing

import requests

from .constants import SERVER_URL


def make_response(
    status_code: int = 200,
    json_body: typing.Any = None,
    text: str = "",
    headers: typing.Optional[dict[str, str]] = None,
    reason: str = "OK",
) -> requests.Response:
    """Build a Jenkins response.

    Args:
        status_code: Status code of the response.
        json_body: JSON document of the response, sent with a JSON content type.
        text: Raw body used when no JSON document is given.
        headers: Additional response headers.
        reason: The HTTP reason phrase.

    Returns:
        The response.
    """
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    response.url = SERVER_URL
    response.encoding = "utf-8"
    if json_body is not None:
        response.headers["Content-Type"] = "application/json;charset=utf-8"
        body = json.dumps(json_body)
    else:
        body = text
    # Responses are built without a connection, the body is set directly.
    response._content = body.encode("utf-8")  # pylint: disable=protected-access
    response.headers.update(headers or {})
    return response


def completed(stdout: str = "") -> subprocess.CompletedProcess:
    """Build a successful security command result.

    Args:
        stdout: The command output.

    Returns:
        The completed process.
    """
    return subprocess.CompletedProcess(args=["security"], returncode=0, stdout=stdout, stderr="")


def security_error(stderr: str) -> subprocess.CalledProcessError:
    """Build a failed security command error.

    Args:
        stderr: The command error output.

    Returns:
        The error raised by subprocess.run with check=True.
    """
    return subprocess.CalledProcessError(44, ["security"], output="", stderr=stderr)
