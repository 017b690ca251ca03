# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Jenkins agent tools.

Every tool validates its inputs, enforces the parameter whitelist on mutating calls and writes
an audit record before calling Jenkins. Jenkins errors are not caught here, the invoker sees
the raw error message.
"""

import dataclasses
import json
import logging
import typing

import jenkins
from exceptions import AuthorizationError, InvalidToolInputError
from keychain import CredentialStore
from state import Configuration

logger = logging.getLogger(__name__)

LIST_JOBS = "jenkins_list_jobs"
GET_JOB_INFO = "jenkins_get_job_info"
LIST_BUILDS = "jenkins_list_builds"
GET_BUILD_INFO = "jenkins_get_build_info"
TRIGGER_BUILD = "jenkins_trigger_build"
UPDATE_PARAMETER = "jenkins_update_parameter"
TOOL_NAMES = (
    LIST_JOBS,
    GET_JOB_INFO,
    LIST_BUILDS,
    GET_BUILD_INFO,
    TRIGGER_BUILD,
    UPDATE_PARAMETER,
)
ROOT_FOLDER = "(root)"
JOB_PATH_SCHEMA = {
    "type": "string",
    "description": "Job path (e.g., 'my-project' or 'folder/my-project')",
}

ToolResult = dict[str, typing.Any]


@dataclasses.dataclass(frozen=True)
class ToolContext:
    """Collaborators shared by the Jenkins tools.

    Attributes:
        client: The Jenkins API client.
        config: The Jenkins plugin configuration.
        audit_logger: The logger receiving audit records.
    """

    client: jenkins.JenkinsClient
    config: Configuration
    audit_logger: logging.Logger = logger


@dataclasses.dataclass(frozen=True)
class Tool:
    """A named operation exposed to agents.

    Attributes:
        name: The tool name.
        description: What the tool does, shown to the agent.
        parameters: JSON schema of the tool input.
        execute: Run the tool with a loosely typed input mapping.
        mutating: Whether the tool changes Jenkins state.
    """

    name: str
    description: str
    parameters: dict[str, typing.Any]
    execute: typing.Callable[[typing.Mapping[str, typing.Any]], ToolResult]
    mutating: bool = False


def _result(payload: typing.Any) -> ToolResult:
    """Wrap a payload in the tool result envelope.

    Args:
        payload: The JSON serializable result.

    Returns:
        The envelope with the pretty printed payload as text content.
    """
    return {
        "content": [{"type": "text", "text": json.dumps(payload, indent=2)}],
        "details": payload,
    }


def _audit(ctx: ToolContext, tool: str, params: typing.Mapping[str, typing.Any]) -> None:
    """Write the audit record of a tool call.

    Args:
        ctx: The tool context.
        tool: The tool name.
        params: The validated tool inputs.
    """
    if not ctx.config.audit_enabled:
        return
    ctx.audit_logger.info("[jenkins] %s: %s", tool, json.dumps(params))


def _required_str(params: typing.Mapping[str, typing.Any], field: str, label: str) -> str:
    """Get a required, trimmed string input.

    Args:
        params: The tool inputs.
        field: The input name.
        label: The input description used in the error message.

    Returns:
        The trimmed value.

    Raises:
        InvalidToolInputError: if the value is missing or blank.
    """
    value = jenkins.to_str(params.get(field)).strip()
    if not value:
        raise InvalidToolInputError(field, f"{label} is required")
    return value


def _build_parameters(value: typing.Any) -> typing.Optional[dict[str, str]]:
    """Coerce the build parameters input.

    Args:
        value: The parameters input.

    Returns:
        The parameters as strings, None if not given.

    Raises:
        InvalidToolInputError: if the input is not an object.
    """
    if value is None:
        return None
    if not isinstance(value, typing.Mapping):
        raise InvalidToolInputError("parameters", "parameters must be an object")
    return {str(name): jenkins.to_str(param_value) for name, param_value in value.items()}


def check_parameters_allowed(config: Configuration, names: typing.Iterable[str]) -> None:
    """Check that every parameter name is whitelisted.

    Args:
        config: The Jenkins plugin configuration.
        names: The parameter names to be set or changed.

    Raises:
        AuthorizationError: on the first name missing from the whitelist.
    """
    for name in names:
        if not config.is_parameter_allowed(name):
            logger.warning("[jenkins] denied change of parameter %s", name)
            raise AuthorizationError(name, config.allowed_mutable_parameters)


def create_list_jobs_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_list_jobs tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """List the items of a folder.

        Args:
            params: The tool inputs.

        Returns:
            The folder items.
        """
        folder = jenkins.to_str(params.get("folder")).strip() or None
        _audit(ctx, LIST_JOBS, {"folder": folder or ROOT_FOLDER})
        jobs = ctx.client.list_jobs(folder)
        return _result(
            {
                "folder": folder or ROOT_FOLDER,
                "jobs": [job.to_payload() for job in jobs],
                "count": len(jobs),
            }
        )

    return Tool(
        name=LIST_JOBS,
        description=(
            "List all jobs in a Jenkins folder (or root if no folder specified). Returns job "
            "names, URLs, status colors, and whether each item is a job or folder."
        ),
        parameters={
            "type": "object",
            "properties": {
                "folder": {
                    "type": "string",
                    "description": (
                        "Folder path to list jobs from (e.g., 'my-folder' or 'parent/child'). "
                        "Leave empty for root."
                    ),
                },
            },
        },
        execute=execute,
    )


def create_get_job_info_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_get_job_info tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """Get the details of a job.

        Args:
            params: The tool inputs.

        Returns:
            The job details.
        """
        job = _required_str(params, "job", "job parameter")
        _audit(ctx, GET_JOB_INFO, {"job": job})
        return _result(ctx.client.get_job_info(job).to_payload())

    return Tool(
        name=GET_JOB_INFO,
        description=(
            "Get information about a Jenkins job including its parameters, last build status, "
            "and configuration."
        ),
        parameters={
            "type": "object",
            "properties": {"job": JOB_PATH_SCHEMA},
            "required": ["job"],
        },
        execute=execute,
    )


def create_list_builds_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_list_builds tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """List the recent builds of a job.

        Args:
            params: The tool inputs.

        Returns:
            The builds.
        """
        job = _required_str(params, "job", "job parameter")
        limit = jenkins.to_int(params.get("limit"), jenkins.DEFAULT_BUILDS_LIMIT)
        if limit < 1:
            limit = jenkins.DEFAULT_BUILDS_LIMIT
        _audit(ctx, LIST_BUILDS, {"job": job, "limit": limit})
        builds = ctx.client.list_builds(job, limit)
        return _result({"job": job, "builds": [build.to_payload() for build in builds]})

    return Tool(
        name=LIST_BUILDS,
        description="List recent builds for a Jenkins job with their status and timestamps.",
        parameters={
            "type": "object",
            "properties": {
                "job": JOB_PATH_SCHEMA,
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of builds to return (default: 10)",
                },
            },
            "required": ["job"],
        },
        execute=execute,
    )


def create_get_build_info_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_get_build_info tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """Get the details of a build.

        Args:
            params: The tool inputs.

        Returns:
            The build details.

        Raises:
            InvalidToolInputError: if no valid build number was given.
        """
        job = _required_str(params, "job", "job parameter")
        build = jenkins.to_int(params.get("build"))
        if build < 1:
            raise InvalidToolInputError("build", "build parameter is required")
        _audit(ctx, GET_BUILD_INFO, {"job": job, "build": build})
        return _result(ctx.client.get_build_info(job, build).to_payload())

    return Tool(
        name=GET_BUILD_INFO,
        description=(
            "Get detailed information about a specific Jenkins build including parameters used "
            "and result."
        ),
        parameters={
            "type": "object",
            "properties": {
                "job": JOB_PATH_SCHEMA,
                "build": {"type": "integer", "minimum": 1, "description": "Build number"},
            },
            "required": ["job", "build"],
        },
        execute=execute,
    )


def create_trigger_build_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_trigger_build tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """Queue a build after checking every parameter against the whitelist.

        Args:
            params: The tool inputs.

        Returns:
            The queued build.
        """
        job = _required_str(params, "job", "job parameter")
        build_parameters = _build_parameters(params.get("parameters"))
        check_parameters_allowed(ctx.config, build_parameters or ())
        _audit(ctx, TRIGGER_BUILD, {"job": job, "parameters": build_parameters})
        queued = ctx.client.trigger_build(job, build_parameters)
        return _result({"job": job, **queued.to_payload()})

    return Tool(
        name=TRIGGER_BUILD,
        description=(
            "Trigger a new build for a Jenkins job. Parameters can only use values from the "
            "allowed whitelist."
        ),
        parameters={
            "type": "object",
            "properties": {
                "job": JOB_PATH_SCHEMA,
                "parameters": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Build parameters as key-value pairs",
                },
            },
            "required": ["job"],
        },
        execute=execute,
        mutating=True,
    )


def create_update_parameter_tool(ctx: ToolContext) -> Tool:
    """Create the jenkins_update_parameter tool.

    Args:
        ctx: The tool context.

    Returns:
        The tool.
    """

    def execute(params: typing.Mapping[str, typing.Any]) -> ToolResult:
        """Change a job parameter default value after checking the whitelist.

        Args:
            params: The tool inputs.

        Returns:
            The update result.
        """
        job = _required_str(params, "job", "job parameter")
        parameter = _required_str(params, "parameter", "parameter name")
        value = jenkins.to_str(params.get("value"))
        check_parameters_allowed(ctx.config, (parameter,))
        _audit(ctx, UPDATE_PARAMETER, {"job": job, "parameter": parameter, "value": value})
        updated = ctx.client.update_parameter(job, parameter, value)
        return _result(
            {"job": job, "parameter": parameter, "value": value, **updated.to_payload()}
        )

    return Tool(
        name=UPDATE_PARAMETER,
        description=(
            "Update a job's default parameter value. Only parameters in the whitelist can be "
            "modified."
        ),
        parameters={
            "type": "object",
            "properties": {
                "job": JOB_PATH_SCHEMA,
                "parameter": {"type": "string", "description": "Parameter name to update"},
                "value": {"type": "string", "description": "New default value for the parameter"},
            },
            "required": ["job", "parameter", "value"],
        },
        execute=execute,
        mutating=True,
    )


def create_tools(ctx: ToolContext) -> list[Tool]:
    """Create all Jenkins tools.

    Args:
        ctx: The tool context.

    Returns:
        The tools, in TOOL_NAMES order.
    """
    return [
        create_list_jobs_tool(ctx),
        create_get_job_info_tool(ctx),
        create_list_builds_tool(ctx),
        create_get_build_info_tool(ctx),
        create_trigger_build_tool(ctx),
        create_update_parameter_tool(ctx),
    ]


def load_tools(
    config: Configuration,
    store: typing.Optional[CredentialStore] = None,
    audit_logger: logging.Logger = logger,
) -> typing.Optional[list[Tool]]:
    """Create the Jenkins tools when Jenkins is configured.

    Args:
        config: The Jenkins plugin configuration.
        store: The credential store, environment and platform keychain by default.
        audit_logger: The logger receiving audit records.

    Returns:
        The tools, or None if the server URL or the credentials are missing.
    """
    if not config.server_url:
        logger.warning("[jenkins] baseUrl not configured - tools disabled.")
        return None
    store = CredentialStore() if store is None else store
    credentials = store.read(config.account_name)
    if not credentials:
        logger.warning("[jenkins] No credentials found - tools disabled.")
        return None
    client = jenkins.JenkinsClient(config, credentials)
    return create_tools(ToolContext(client=client, config=config, audit_logger=audit_logger))
