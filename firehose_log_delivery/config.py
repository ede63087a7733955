"""
Input configuration for the Firehose log delivery module.

Values come from CDK context (``cdk synth -c key=value`` or ``cdk.json``) and
fall back to environment variables. Everything is validated here, before any
construct is declared, so a bad input fails the synth instead of a deploy.
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_NAME_PREFIX = "cloudwatch-export"
DEFAULT_HTTP_ENDPOINT_NAME = "http-endpoint"
DEFAULT_COMPRESSION_FORMAT = "UNCOMPRESSED"
DEFAULT_LOG_RETENTION_DAYS = 14

COMPRESSION_FORMATS = ("UNCOMPRESSED", "GZIP", "ZIP", "Snappy", "HADOOP_SNAPPY")

# Values accepted by CloudWatch Logs for RetentionInDays
LOG_RETENTION_DAYS = (
    1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545,
    731, 1096, 1827, 2192, 2557, 2922, 3288, 3653,
)

S3_BUCKET_ARN_PATTERN = re.compile(r"^arn:aws[a-z-]*:s3:::[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")

# Stream names are at most 64 characters and the suffix takes 17 of them
NAME_PREFIX_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]{1,47}$")

# CloudWatch Logs log group name rules
LOG_GROUP_NAME_PATTERN = re.compile(r"^[.\-_/#A-Za-z0-9]{1,512}$")

# Subscription filter names are "<log group>-firehose-<16 hex>", at most 512
MAX_FILTER_NAME_LENGTH = 512
FILTER_NAME_OVERHEAD = len("-firehose-") + 16


class ConfigurationError(ValueError):
    """Raised when the module inputs cannot produce a valid resource graph."""


@dataclass(frozen=True)
class S3Destination:
    bucket_arn: str
    compression_format: str = DEFAULT_COMPRESSION_FORMAT

    kind = "extended_s3"

    @property
    def bucket_name(self) -> str:
        return self.bucket_arn.split(":::", 1)[1]


@dataclass(frozen=True)
class HttpDestination:
    url: str
    name: str = DEFAULT_HTTP_ENDPOINT_NAME

    kind = "http_endpoint"


Destination = Union[S3Destination, HttpDestination]


def resolve_destination(
    destination_bucket_arn: str,
    destination_http_endpoint: str,
    s3_compression_format: str = DEFAULT_COMPRESSION_FORMAT,
    http_endpoint_name: str = DEFAULT_HTTP_ENDPOINT_NAME,
) -> Destination:
    """
    Pick the delivery stream destination from the two optional inputs.

    Exactly one of ``destination_bucket_arn`` and ``destination_http_endpoint``
    must be non-empty.

    Raises:
        ConfigurationError: If neither or both are supplied, or the supplied
            one is malformed.
    """
    bucket_arn = (destination_bucket_arn or "").strip()
    endpoint = (destination_http_endpoint or "").strip()

    if bucket_arn and endpoint:
        raise ConfigurationError(
            "destinationBucketArn and destinationHttpEndpoint are mutually exclusive; supply only one"
        )
    if not bucket_arn and not endpoint:
        raise ConfigurationError(
            "No destination configured. Pass -c destinationBucketArn=... or -c destinationHttpEndpoint=..."
        )

    if bucket_arn:
        if not S3_BUCKET_ARN_PATTERN.match(bucket_arn):
            raise ConfigurationError(f"destinationBucketArn is not an S3 bucket ARN: {bucket_arn!r}")
        if s3_compression_format not in COMPRESSION_FORMATS:
            raise ConfigurationError(
                f"s3CompressionFormat must be one of {', '.join(COMPRESSION_FORMATS)}, got {s3_compression_format!r}"
            )
        return S3Destination(bucket_arn=bucket_arn, compression_format=s3_compression_format)

    # Firehose only delivers to HTTPS endpoints
    if not endpoint.startswith("https://"):
        raise ConfigurationError(f"destinationHttpEndpoint must be an https:// URL, got {endpoint!r}")
    if not http_endpoint_name:
        raise ConfigurationError("httpEndpointName must not be empty")
    return HttpDestination(url=endpoint, name=http_endpoint_name)


@dataclass(frozen=True)
class LogDeliveryConfig:
    """
    Validated inputs for ``LogDeliveryModule``.

    Attributes:
        cloudwatch_log_group_names: Log groups to subscribe, one filter each.
        destination: Where the delivery stream writes.
        cloudwatch_filter_pattern: Filter pattern shared by every subscription.
        tags: Tags applied to every resource the module owns.
        name_prefix: Leading part of the delivery stream name.
        log_retention_days: Retention of the delivery diagnostics log group.
        name_suffix: Pinned 16 hex character suffix, random when ``None``.
    """

    cloudwatch_log_group_names: Tuple[str, ...]
    destination: Destination
    cloudwatch_filter_pattern: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    name_prefix: str = DEFAULT_NAME_PREFIX
    log_retention_days: int = DEFAULT_LOG_RETENTION_DAYS
    name_suffix: Optional[str] = None

    def __post_init__(self):
        names = tuple(self.cloudwatch_log_group_names)
        if not names:
            raise ConfigurationError(
                "cloudwatchLogGroupNames is empty. Pass -c cloudwatchLogGroupNames=group-a,group-b "
                "or set CLOUDWATCH_LOG_GROUP_NAMES."
            )
        if any(not name for name in names):
            raise ConfigurationError("cloudwatchLogGroupNames must not contain empty names")
        invalid = [name for name in names if not LOG_GROUP_NAME_PATTERN.match(name)]
        if invalid:
            raise ConfigurationError(f"cloudwatchLogGroupNames contains invalid log group names: {', '.join(invalid)}")
        too_long = [name for name in names if len(name) + FILTER_NAME_OVERHEAD > MAX_FILTER_NAME_LENGTH]
        if too_long:
            raise ConfigurationError(
                f"cloudwatchLogGroupNames longer than {MAX_FILTER_NAME_LENGTH - FILTER_NAME_OVERHEAD} characters "
                f"leave no room for the subscription filter name: {', '.join(n[:40] + '...' for n in too_long)}"
            )
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"cloudwatchLogGroupNames contains duplicates: {', '.join(duplicates)}")
        object.__setattr__(self, "cloudwatch_log_group_names", names)

        if not isinstance(self.tags, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in self.tags.items()
        ):
            raise ConfigurationError("tags must be a mapping of strings to strings")
        object.__setattr__(self, "tags", dict(self.tags))

        if not NAME_PREFIX_PATTERN.match(self.name_prefix or ""):
            raise ConfigurationError(
                f"namePrefix must be 1-47 characters of letters, digits, underscores, dots and dashes, got {self.name_prefix!r}"
            )
        if self.log_retention_days not in LOG_RETENTION_DAYS:
            raise ConfigurationError(
                f"logRetentionDays {self.log_retention_days} is not a CloudWatch Logs retention value"
            )

    @classmethod
    def from_inputs(
        cls,
        cloudwatch_log_group_names: List[str],
        cloudwatch_filter_pattern: str = "",
        destination_bucket_arn: str = "",
        destination_http_endpoint: str = "",
        s3_compression_format: str = DEFAULT_COMPRESSION_FORMAT,
        tags: Optional[Dict[str, str]] = None,
        name_prefix: str = DEFAULT_NAME_PREFIX,
        http_endpoint_name: str = DEFAULT_HTTP_ENDPOINT_NAME,
        log_retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
        name_suffix: Optional[str] = None,
    ) -> "LogDeliveryConfig":
        """Build a config from the module's flat input variables."""
        destination = resolve_destination(
            destination_bucket_arn,
            destination_http_endpoint,
            s3_compression_format=s3_compression_format,
            http_endpoint_name=http_endpoint_name,
        )
        return cls(
            cloudwatch_log_group_names=tuple(cloudwatch_log_group_names or ()),
            destination=destination,
            cloudwatch_filter_pattern=cloudwatch_filter_pattern or "",
            tags=tags if tags is not None else {},
            name_prefix=name_prefix,
            log_retention_days=log_retention_days,
            name_suffix=name_suffix or None,
        )

    @classmethod
    def from_context(cls, node, environ: Optional[Mapping[str, str]] = None) -> "LogDeliveryConfig":
        """
        Read the inputs from a construct node's context, falling back to
        environment variables.

        Args:
            node: Construct node, usually ``app.node``.
            environ: Environment mapping, defaults to ``os.environ``.
        """
        environ = os.environ if environ is None else environ

        def lookup(context_key: str, env_var: str, default: Any = None) -> Any:
            value = node.try_get_context(context_key)
            if value is None:
                value = environ.get(env_var)
            return default if value is None else value

        config = cls.from_inputs(
            cloudwatch_log_group_names=_parse_list(
                lookup("cloudwatchLogGroupNames", "CLOUDWATCH_LOG_GROUP_NAMES", [])
            ),
            cloudwatch_filter_pattern=lookup("cloudwatchFilterPattern", "CLOUDWATCH_FILTER_PATTERN", ""),
            destination_bucket_arn=lookup("destinationBucketArn", "DESTINATION_BUCKET_ARN", ""),
            destination_http_endpoint=lookup("destinationHttpEndpoint", "DESTINATION_HTTP_ENDPOINT", ""),
            s3_compression_format=lookup("s3CompressionFormat", "S3_COMPRESSION_FORMAT", DEFAULT_COMPRESSION_FORMAT),
            tags=_parse_tags(lookup("tags", "TAGS", {})),
            name_prefix=lookup("namePrefix", "NAME_PREFIX", DEFAULT_NAME_PREFIX),
            http_endpoint_name=lookup("httpEndpointName", "HTTP_ENDPOINT_NAME", DEFAULT_HTTP_ENDPOINT_NAME),
            log_retention_days=_parse_int(
                "logRetentionDays", lookup("logRetentionDays", "LOG_RETENTION_DAYS", DEFAULT_LOG_RETENTION_DAYS)
            ),
            name_suffix=lookup("nameSuffix", "NAME_SUFFIX"),
        )
        logger.info(
            "Resolved %s destination for %d log group(s)",
            config.destination.kind,
            len(config.cloudwatch_log_group_names),
        )
        return config


def _parse_list(value: Any) -> List[str]:
    # -c on the command line always yields a string
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ConfigurationError(f"cloudwatchLogGroupNames must be a list or comma separated string, got {value!r}")


def _parse_tags(value: Any) -> Dict[str, str]:
    if isinstance(value, str):
        if not value.strip():
            return {}
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"tags is not valid JSON: {e}") from e
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"tags must be a JSON object, got {value!r}")
    return dict(value)


def _parse_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e
