# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Jenkins plugin configuration."""
import logging
import typing

from pydantic import AliasChoices, AnyUrl, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "default"
DEFAULT_TIMEOUT_MS = 30000

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


class Configuration(BaseModel):
    """The resolved Jenkins plugin configuration.

    Attributes:
        server_url: Jenkins server base URL, e.g. https://jenkins.example.com.
        account_name: Keychain account name used for credential lookup.
        allowed_mutable_parameters: Parameter names agents are allowed to set or change.
        request_timeout_ms: Timeout of a single Jenkins request in milliseconds.
        audit_enabled: Whether every tool call is written to the audit log.
    """

    model_config = ConfigDict(frozen=True, strict=True, extra="ignore")

    server_url: typing.Optional[str] = Field(
        default=None, validation_alias=AliasChoices("baseUrl", "serverUrl", "server_url")
    )
    account_name: str = Field(
        default=DEFAULT_ACCOUNT,
        validation_alias=AliasChoices("account", "accountName", "account_name"),
    )
    allowed_mutable_parameters: typing.Tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "allowedParameters", "allowedMutableParameters", "allowed_mutable_parameters"
        ),
    )
    request_timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        gt=0,
        validation_alias=AliasChoices("timeoutMs", "requestTimeoutMs", "request_timeout_ms"),
    )
    audit_enabled: bool = Field(
        default=True, validation_alias=AliasChoices("auditLog", "auditEnabled", "audit_enabled")
    )

    @field_validator("server_url")
    @classmethod
    def absolute_url(cls, value: typing.Optional[str]) -> typing.Optional[str]:
        """Validate the server URL is an absolute URL.

        Args:
            value: The server URL input.

        Returns:
            The server URL, unchanged.

        Raises:
            ValueError: if the URL is relative or malformed.
        """
        if value is None:
            return value
        try:
            url = _URL_ADAPTER.validate_python(value)
        except PydanticValidationError as exc:
            raise ValueError(f"{value!r} is not a valid absolute URL") from exc
        if not url.host:
            raise ValueError(f"{value!r} is not a valid absolute URL")
        return value

    @field_validator("allowed_mutable_parameters", mode="before")
    @classmethod
    def ordered_names(cls, value: typing.Any) -> typing.Tuple[str, ...]:
        """Validate the whitelist is a list of names and drop duplicates.

        Args:
            value: The whitelist input.

        Returns:
            The unique parameter names in their first-seen order.

        Raises:
            ValueError: if the input is not a list of strings.
        """
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ValueError("must be a list of strings")
        return tuple(dict.fromkeys(value))

    @field_validator("request_timeout_ms", mode="before")
    @classmethod
    def integral_timeout(cls, value: typing.Any) -> typing.Any:
        """Accept whole floats as timeout milliseconds.

        Args:
            value: The timeout input.

        Returns:
            The timeout as an int when given an integral float, the input otherwise.
        """
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    def is_parameter_allowed(self, name: str) -> bool:
        """Check a parameter name against the whitelist.

        The whitelist is closed: an empty whitelist denies every parameter.

        Args:
            name: The parameter name, compared case-sensitively.

        Returns:
            True if the parameter may be changed, False otherwise.
        """
        return name in self.allowed_mutable_parameters

    @property
    def request_timeout(self) -> float:
        """The request timeout in seconds."""
        return self.request_timeout_ms / 1000


def _input_key(loc: str, data: typing.Mapping[str, typing.Any]) -> str:
    """Find the input key the user supplied for a failing field.

    Args:
        loc: The field location reported by pydantic.
        data: The raw configuration mapping.

    Returns:
        The key present in the input, or the location itself if none matched.
    """
    for name, field in Configuration.model_fields.items():
        alias = field.validation_alias
        choices = alias.choices if isinstance(alias, AliasChoices) else []
        if loc != name and loc not in choices:
            continue
        for choice in choices:
            if isinstance(choice, str) and choice in data:
                return choice
    return loc


def resolve(raw: typing.Any) -> Configuration:
    """Resolve an untrusted plugin configuration object.

    Anything that is not a mapping is treated as an empty configuration so that every
    default applies.

    Args:
        raw: The plugin configuration input supplied by the host.

    Returns:
        The validated configuration with defaults applied.

    Raises:
        ValidationError: if a supplied value has the wrong type or the URL is malformed.
    """
    data: typing.Mapping[str, typing.Any] = raw if isinstance(raw, typing.Mapping) else {}
    try:
        return Configuration.model_validate(dict(data))
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        loc = str(error["loc"][0]) if error["loc"] else "configuration"
        field = _input_key(loc, data)
        logger.error("Invalid Jenkins configuration value for %s, %s", field, error["msg"])
        raise ValidationError(field, error["msg"]) from exc
