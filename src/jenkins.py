# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Functions to operate Jenkins over its REST API."""

import base64
import logging
import re
import typing
import urllib.parse
from xml.sax.saxutils import escape  # nosec B406

import requests
from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from exceptions import ApiError, ConfigurationError, JenkinsError, NotFoundError, TransportError
from keychain import Credentials
from state import Configuration

logger = logging.getLogger(__name__)

# The _class markers of items that contain other jobs
FOLDER_CLASS_MARKERS = ("Folder", "OrganizationFolder", "WorkflowMultiBranchProject")
DEFAULT_BUILDS_LIMIT = 10
JOBS_TREE = "jobs[name,url,color,_class]"
JOB_INFO_TREE = (
    "name,url,description,buildable,inQueue,"
    "lastBuild[number,url],lastSuccessfulBuild[number,url],lastFailedBuild[number,url],"
    "property[parameterDefinitions[name,type,description,defaultParameterValue[value],choices]]"
)
BUILDS_TREE = "builds[number,url,result,timestamp,duration]"
BUILD_INFO_TREE = (
    "number,url,result,building,timestamp,duration,displayName,description,"
    "actions[parameters[name,value]]"
)
WHO_AM_I_PATH = "/me/api/json"
NODE_DESCRIPTION_PATH = "/api/json?tree=nodeDescription"
STRING_PARAMETER_BLOCK = re.compile(
    r"<hudson\.model\.StringParameterDefinition(?:\s[^>]*?)?>"
    r".*?</hudson\.model\.StringParameterDefinition>",
    re.DOTALL,
)
DEFAULT_VALUE_ELEMENT = re.compile(
    r"<defaultValue(?:\s[^>]*?)?(?:/>|>(?P<value>.*?)</defaultValue>)", re.DOTALL
)


class _Payload(BaseModel):
    """Base of the Jenkins API results, serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True, alias_generator=AliasGenerator(serialization_alias=to_camel)
    )

    def to_payload(self) -> dict[str, typing.Any]:
        """Convert the result to a JSON serializable mapping.

        Returns:
            The result fields by their API name, unset fields omitted.
        """
        return self.model_dump(by_alias=True, exclude_none=True)


class BuildRef(_Payload):
    """Reference to a build of a job.

    Attributes:
        number: The build number.
        url: The build URL.
    """

    number: int
    url: str


class ParameterDefinition(_Payload):
    """A parameter declared by a job.

    Attributes:
        name: The parameter name.
        type: The parameter definition class name, e.g. StringParameterDefinition.
        description: The parameter description.
        default_value: The default value of the parameter.
        choices: The allowed values of a choice parameter.
    """

    name: str
    type: str
    description: typing.Optional[str] = None
    default_value: typing.Optional[str] = None
    choices: typing.Optional[list[str]] = None


class JobInfo(_Payload):
    """Jenkins job details.

    Attributes:
        name: The job name.
        url: The job URL.
        description: The job description.
        buildable: Whether the job can be built.
        in_queue: Whether a build of the job is waiting in the queue.
        last_build: The latest build.
        last_successful_build: The latest successful build.
        last_failed_build: The latest failed build.
        parameters: The job parameter definitions.
    """

    name: str
    url: str
    description: typing.Optional[str] = None
    buildable: bool
    in_queue: bool
    last_build: typing.Optional[BuildRef] = None
    last_successful_build: typing.Optional[BuildRef] = None
    last_failed_build: typing.Optional[BuildRef] = None
    parameters: typing.Optional[list[ParameterDefinition]] = None


class BuildParameter(_Payload):
    """A parameter value a build ran with.

    Attributes:
        name: The parameter name.
        value: The parameter value.
    """

    name: str
    value: str


class BuildInfo(_Payload):
    """Jenkins build details.

    Attributes:
        number: The build number.
        url: The build URL.
        result: The build result, unset while building.
        building: Whether the build is running.
        timestamp: The build start time in epoch milliseconds.
        duration: The build duration in milliseconds.
        display_name: The build display name.
        description: The build description.
        parameters: The parameter values the build ran with.
    """

    number: int
    url: str
    result: typing.Optional[str] = None
    building: bool
    timestamp: int
    duration: int
    display_name: typing.Optional[str] = None
    description: typing.Optional[str] = None
    parameters: typing.Optional[list[BuildParameter]] = None


class BuildListItem(_Payload):
    """Summary of a build in a job build history.

    Attributes:
        number: The build number.
        url: The build URL.
        result: The build result, unset while building.
        timestamp: The build start time in epoch milliseconds.
        duration: The build duration in milliseconds.
    """

    number: int
    url: str
    result: typing.Optional[str] = None
    timestamp: int
    duration: int


class JobListItem(_Payload):
    """An item of a Jenkins folder.

    Attributes:
        name: The item name.
        url: The item URL.
        color: The status color of a job.
        kind: Whether the item is a job or a folder of jobs.
    """

    name: str
    url: str
    color: typing.Optional[str] = None
    kind: typing.Literal["job", "folder"] = Field(serialization_alias="type")


class QueuedBuild(_Payload):
    """Result of triggering a build.

    The build has been queued, it has not necessarily started.

    Attributes:
        queued: Whether the build was accepted into the queue.
        queue_url: The URL of the queue item when Jenkins reports it.
    """

    queued: bool = True
    queue_url: typing.Optional[str] = None


class ParameterUpdate(_Payload):
    """Result of updating a job parameter default value.

    Attributes:
        updated: Whether the job configuration was updated.
    """

    updated: bool = True


class ConnectionStatus(_Payload):
    """Result of a Jenkins connection check.

    Attributes:
        ok: Whether Jenkins could be reached.
        version: Identity or server description reported by Jenkins.
        error: The reason the connection failed.
    """

    ok: bool
    version: typing.Optional[str] = None
    error: typing.Optional[str] = None


def to_str(value: typing.Any, default: str = "") -> str:
    """Convert a JSON scalar to string.

    Args:
        value: The JSON value.
        default: The value used for null, objects and arrays.

    Returns:
        The string form of the value.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return default


def to_int(value: typing.Any, default: int = 0) -> int:
    """Convert a JSON number to int.

    Args:
        value: The JSON value.
        default: The value used when the input is not numeric.

    Returns:
        The integer value.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _optional_str(value: typing.Any) -> typing.Optional[str]:
    """Keep a JSON value only if it is a string.

    Args:
        value: The JSON value.

    Returns:
        The string, None for any other type.
    """
    return value if isinstance(value, str) else None


def _as_mapping(value: typing.Any) -> dict[str, typing.Any]:
    """Keep a JSON value only if it is an object.

    Args:
        value: The JSON value.

    Returns:
        The object, an empty one for any other type.
    """
    return value if isinstance(value, dict) else {}


def _as_list(value: typing.Any) -> list[typing.Any]:
    """Keep a JSON value only if it is an array.

    Args:
        value: The JSON value.

    Returns:
        The array, an empty one for any other type.
    """
    return value if isinstance(value, list) else []


def normalize_job_path(job_path: str) -> str:
    """Convert a slash separated job path to the Jenkins nested job URL path.

    i.e. "folder/my-job" => "/job/folder/job/my-job"

    Args:
        job_path: The job path, folders first.

    Returns:
        The URL path of the job, empty for an empty path.
    """
    return "".join(
        f"/job/{urllib.parse.quote(segment, safe='')}"
        for segment in job_path.split("/")
        if segment
    )


def _is_folder(class_name: str) -> bool:
    """Check whether a Jenkins item class holds other jobs.

    Args:
        class_name: The fully qualified _class of the item.

    Returns:
        True if the item is a folder, False otherwise.
    """
    return any(marker in class_name for marker in FOLDER_CLASS_MARKERS)


def _extract_build_ref(value: typing.Any) -> typing.Optional[BuildRef]:
    """Extract a build reference.

    Args:
        value: The JSON value of a lastBuild like field.

    Returns:
        The build reference if a build number is present, None otherwise.
    """
    data = _as_mapping(value)
    number = data.get("number")
    if isinstance(number, bool) or not isinstance(number, (int, float)):
        return None
    return BuildRef(number=int(number), url=to_str(data.get("url")))


def _extract_parameters(data: dict[str, typing.Any]) -> typing.Optional[list[ParameterDefinition]]:
    """Extract the parameter definitions of a job.

    Args:
        data: The job JSON.

    Returns:
        The definitions of the first property declaring parameters, None if there are none.
    """
    for prop in _as_list(data.get("property")):
        definitions = _as_mapping(prop).get("parameterDefinitions")
        if not isinstance(definitions, list):
            continue
        parameters = []
        for definition in definitions:
            if not isinstance(definition, dict):
                continue
            default = _as_mapping(definition.get("defaultParameterValue"))
            choices = definition.get("choices")
            parameters.append(
                ParameterDefinition(
                    name=to_str(definition.get("name")),
                    type=to_str(definition.get("type")).rsplit(".", 1)[-1],
                    description=_optional_str(definition.get("description")),
                    default_value=to_str(default["value"]) if "value" in default else None,
                    choices=(
                        [to_str(choice) for choice in choices]
                        if isinstance(choices, list)
                        else None
                    ),
                )
            )
        return parameters or None
    return None


def _extract_build_parameters(
    data: dict[str, typing.Any],
) -> typing.Optional[list[BuildParameter]]:
    """Extract the parameter values of a build.

    Args:
        data: The build JSON.

    Returns:
        The values of the first action carrying parameters, None if there is none.
    """
    for action in _as_list(data.get("actions")):
        parameters = _as_mapping(action).get("parameters")
        if not isinstance(parameters, list):
            continue
        return [
            BuildParameter(name=to_str(param.get("name")), value=to_str(param.get("value")))
            for param in parameters
            if isinstance(param, dict)
        ]
    return None


def patch_string_parameter_default(document: str, name: str, value: str) -> str:
    """Replace the default value of a string parameter in a job config.xml.

    Only the <hudson.model.StringParameterDefinition> block whose <name> is exactly the given
    name is changed, the rest of the document is kept byte for byte.

    Args:
        document: The job config.xml content.
        name: The parameter name, matched case-sensitively.
        value: The new default value, XML escaped before insertion.

    Returns:
        The patched document.

    Raises:
        NotFoundError: if no string parameter with a default value has that name.
    """
    name_element = re.compile(rf"<name>{re.escape(name)}</name>")
    escaped = escape(value, {'"': "&quot;", "'": "&apos;"})
    for block in STRING_PARAMETER_BLOCK.finditer(document):
        text = block.group(0)
        if not name_element.search(text):
            continue
        default = DEFAULT_VALUE_ELEMENT.search(text)
        if not default:
            continue
        if default.group("value") is None:
            start, end = default.span()
            replacement = f"<defaultValue>{escaped}</defaultValue>"
        else:
            start, end = default.span("value")
            replacement = escaped
        patched = f"{text[:start]}{replacement}{text[end:]}"
        return f"{document[:block.start()]}{patched}{document[block.end():]}"
    raise NotFoundError(f'Parameter "{name}" not found in job config')


class JenkinsClient:
    """Jenkins REST API client authenticating with Basic auth.

    Attrs:
        base_url: The Jenkins server URL without trailing slash.
        timeout: The timeout of a single request in seconds.
    """

    def __init__(self, config: Configuration, credentials: Credentials):
        """Construct a Jenkins client.

        Args:
            config: The Jenkins plugin configuration.
            credentials: The Jenkins user credentials.

        Raises:
            ConfigurationError: if the configuration has no server URL.
        """
        if not config.server_url:
            raise ConfigurationError("Jenkins server URL is required.")
        self.base_url = config.server_url.rstrip("/")
        user_token = f"{credentials.principal}:{credentials.secret}".encode("utf-8")
        self._auth = base64.b64encode(user_token).decode("ascii")
        self.timeout = config.request_timeout

    def _send(
        self,
        path: str,
        method: str = "GET",
        data: typing.Union[str, bytes, None] = None,
        headers: typing.Optional[dict[str, str]] = None,
    ) -> requests.Response:
        """Send a single authenticated request to Jenkins.

        Args:
            path: The URL path, with query, relative to the server URL.
            method: The HTTP method.
            data: The encoded request body.
            headers: Additional request headers.

        Returns:
            The successful response.

        Raises:
            TransportError: if Jenkins could not be reached within the timeout.
            ApiError: if Jenkins answered with a non 2xx status code.
        """
        url = f"{self.base_url}{path}"
        logger.debug("Jenkins API: %s %s", method, url)
        request_headers = {"Authorization": f"Basic {self._auth}", **(headers or {})}
        try:
            response = requests.request(
                method, url, headers=request_headers, data=data, timeout=self.timeout
            )
        except requests.exceptions.Timeout as exc:
            logger.error("Jenkins request timed out, %s %s", method, url)
            raise TransportError(
                f"Jenkins request timed out after {self.timeout}s: {method} {url}"
            ) from exc
        except requests.exceptions.RequestException as exc:
            logger.error("Failed to reach Jenkins, %s", exc)
            raise TransportError(f"Failed to reach Jenkins: {exc}") from exc

        if not 200 <= response.status_code < 300:
            logger.error("Jenkins API error, %s %s: %s", method, url, response.status_code)
            raise ApiError(response.status_code, response.reason or "", response.text or "")
        return response

    @staticmethod
    def _parse(response: requests.Response) -> dict[str, typing.Any]:
        """Parse a Jenkins JSON response.

        Args:
            response: The successful response.

        Returns:
            The JSON object, or an empty one when the response carries no JSON object.
        """
        if "application/json" not in response.headers.get("Content-Type", ""):
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.warning("Undecodable JSON response from %s", response.url)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected JSON response from %s", response.url)
            return {}
        return data

    def _form_request(
        self,
        path: str,
        method: str = "GET",
        body: typing.Union[typing.Mapping[str, str], str, None] = None,
    ) -> requests.Response:
        """Send a JSON accepting request with an optional form body.

        Args:
            path: The URL path, with query, relative to the server URL.
            method: The HTTP method.
            body: Form fields to urlencode, or an already encoded body.

        Returns:
            The successful response.
        """
        headers = {"Accept": "application/json"}
        data = None
        if body:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            data = body if isinstance(body, str) else urllib.parse.urlencode(body)
        return self._send(path, method, data=data, headers=headers)

    def request(
        self,
        path: str,
        method: str = "GET",
        body: typing.Union[typing.Mapping[str, str], str, None] = None,
    ) -> dict[str, typing.Any]:
        """Call a Jenkins JSON endpoint.

        Several endpoints answer without a body, absent fields in the result mean unset.

        Args:
            path: The URL path, with query, relative to the server URL.
            method: The HTTP method.
            body: Form fields to urlencode, or an already encoded body.

        Returns:
            The parsed JSON object, empty if the response is not JSON.
        """
        return self._parse(self._form_request(path, method, body))

    def list_jobs(self, folder: typing.Optional[str] = None) -> list[JobListItem]:
        """List the jobs and folders of a folder.

        Args:
            folder: The folder path, the root folder if not given.

        Returns:
            The folder items.
        """
        base_path = normalize_job_path(folder) if folder else ""
        data = self.request(f"{base_path}/api/json?tree={JOBS_TREE}")
        return [
            JobListItem(
                name=to_str(job.get("name")),
                url=to_str(job.get("url")),
                color=_optional_str(job.get("color")),
                kind="folder" if _is_folder(to_str(job.get("_class"))) else "job",
            )
            for job in _as_list(data.get("jobs"))
            if isinstance(job, dict)
        ]

    def get_job_info(self, job_path: str) -> JobInfo:
        """Get the details of a job, including its parameter definitions.

        Args:
            job_path: The job path.

        Returns:
            The job details.
        """
        data = self.request(f"{normalize_job_path(job_path)}/api/json?tree={JOB_INFO_TREE}")
        return JobInfo(
            name=to_str(data.get("name")),
            url=to_str(data.get("url")),
            description=_optional_str(data.get("description")),
            buildable=bool(data.get("buildable")),
            in_queue=bool(data.get("inQueue")),
            last_build=_extract_build_ref(data.get("lastBuild")),
            last_successful_build=_extract_build_ref(data.get("lastSuccessfulBuild")),
            last_failed_build=_extract_build_ref(data.get("lastFailedBuild")),
            parameters=_extract_parameters(data),
        )

    def list_builds(self, job_path: str, limit: int = DEFAULT_BUILDS_LIMIT) -> list[BuildListItem]:
        """List the most recent builds of a job.

        Args:
            job_path: The job path.
            limit: The maximum number of builds to return.

        Returns:
            The builds, newest first.
        """
        data = self.request(
            f"{normalize_job_path(job_path)}/api/json?tree={BUILDS_TREE}{{0,{limit}}}"
        )
        return [
            BuildListItem(
                number=to_int(build.get("number")),
                url=to_str(build.get("url")),
                result=_optional_str(build.get("result")),
                timestamp=to_int(build.get("timestamp")),
                duration=to_int(build.get("duration")),
            )
            for build in _as_list(data.get("builds"))
            if isinstance(build, dict)
        ]

    def get_build_info(self, job_path: str, build_number: int) -> BuildInfo:
        """Get the details of a build, including the parameters it ran with.

        Args:
            job_path: The job path.
            build_number: The build number.

        Returns:
            The build details.
        """
        data = self.request(
            f"{normalize_job_path(job_path)}/{build_number}/api/json?tree={BUILD_INFO_TREE}"
        )
        return BuildInfo(
            number=to_int(data.get("number"), build_number),
            url=to_str(data.get("url")),
            result=_optional_str(data.get("result")),
            building=bool(data.get("building")),
            timestamp=to_int(data.get("timestamp")),
            duration=to_int(data.get("duration")),
            display_name=_optional_str(data.get("displayName")),
            description=_optional_str(data.get("description")),
            parameters=_extract_build_parameters(data),
        )

    def trigger_build(
        self, job_path: str, parameters: typing.Optional[typing.Mapping[str, str]] = None
    ) -> QueuedBuild:
        """Queue a build of a job.

        Jenkins queues builds asynchronously, poll list_builds or get_build_info to follow the
        build.

        Args:
            job_path: The job path.
            parameters: The build parameters.

        Returns:
            The queued build.
        """
        endpoint = "/buildWithParameters" if parameters else "/build"
        response = self._form_request(
            f"{normalize_job_path(job_path)}{endpoint}", "POST", parameters or None
        )
        queue_url = response.headers.get("Location") or _optional_str(
            self._parse(response).get("queueUrl")
        )
        return QueuedBuild(queued=True, queue_url=queue_url)

    def update_parameter(self, job_path: str, name: str, value: str) -> ParameterUpdate:
        """Change the default value of a string parameter of a job.

        The job config.xml is fetched, patched and posted back. Nothing is written if the
        parameter is not found.

        Args:
            job_path: The job path.
            name: The parameter name.
            value: The new default value.

        Returns:
            The update result.
        """
        config_path = f"{normalize_job_path(job_path)}/config.xml"
        document = self._send(config_path).text
        patched = patch_string_parameter_default(document, name, value)
        self._send(
            config_path,
            "POST",
            data=patched.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )
        return ParameterUpdate(updated=True)

    def test_connection(self) -> ConnectionStatus:
        """Check that Jenkins is reachable with the configured credentials.

        Returns:
            The connection status, with the authenticated identity when available.
        """
        try:
            me = self.request(WHO_AM_I_PATH)
        except JenkinsError as exc:
            logger.debug("Jenkins identity check failed, falling back, %s", exc)
        else:
            full_name = _optional_str(me.get("fullName"))
            return ConnectionStatus(
                ok=True, version=f"Authenticated as {full_name}" if full_name else "Authenticated"
            )
        try:
            data = self.request(NODE_DESCRIPTION_PATH)
        except JenkinsError as exc:
            return ConnectionStatus(ok=False, error=str(exc))
        return ConnectionStatus(ok=True, version=_optional_str(data.get("nodeDescription")))
