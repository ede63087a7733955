import aws_cdk as cdk
import pytest
from firehose_log_delivery.config import (
    ConfigurationError,
    HttpDestination,
    LogDeliveryConfig,
    S3Destination,
    resolve_destination,
)


def test_bucket_arn_selects_s3_destination():
    destination = resolve_destination("arn:aws:s3:::dest", "")
    assert destination == S3Destination(bucket_arn="arn:aws:s3:::dest", compression_format="UNCOMPRESSED")
    assert destination.kind == "extended_s3"
    assert destination.bucket_name == "dest"

def test_endpoint_selects_http_destination():
    destination = resolve_destination("", "https://logs.example.com/ingest")
    assert isinstance(destination, HttpDestination)
    assert destination.kind == "http_endpoint"
    assert destination.url == "https://logs.example.com/ingest"

@pytest.mark.parametrize("bucket_arn, endpoint", [
    ("", ""),
    ("  ", ""),
    ("arn:aws:s3:::dest", "https://logs.example.com/ingest"),
])
def test_destination_requires_exactly_one_input(bucket_arn, endpoint):
    with pytest.raises(ConfigurationError):
        resolve_destination(bucket_arn, endpoint)

@pytest.mark.parametrize("bucket_arn", [
    "dest",
    "arn:aws:s3:::",
    "arn:aws:s3:::Dest_Bucket",
    "arn:aws:s3:eu-west-2:123456789012:dest",
])
def test_malformed_bucket_arn_rejected(bucket_arn):
    with pytest.raises(ConfigurationError, match="destinationBucketArn"):
        resolve_destination(bucket_arn, "")

def test_plain_http_endpoint_rejected():
    with pytest.raises(ConfigurationError, match="https"):
        resolve_destination("", "http://logs.example.com/ingest")

def test_unknown_compression_format_rejected():
    with pytest.raises(ConfigurationError, match="s3CompressionFormat"):
        resolve_destination("arn:aws:s3:::dest", "", s3_compression_format="BROTLI")

def test_longest_log_group_name_that_fits_a_filter_name():
    config = LogDeliveryConfig.from_inputs(
        cloudwatch_log_group_names=["x" * 486],
        destination_bucket_arn="arn:aws:s3:::dest",
    )
    assert len(config.cloudwatch_log_group_names[0]) == 486

def test_from_inputs_defaults():
    config = LogDeliveryConfig.from_inputs(
        cloudwatch_log_group_names=["app-1", "app-2"],
        destination_bucket_arn="arn:aws:s3:::dest",
    )
    assert config.cloudwatch_log_group_names == ("app-1", "app-2")
    assert config.cloudwatch_filter_pattern == ""
    assert config.tags == {}
    assert config.name_prefix == "cloudwatch-export"
    assert config.log_retention_days == 14
    assert config.name_suffix is None

@pytest.mark.parametrize("names, message", [
    ([], "empty"),
    (["app-1", ""], "empty names"),
    (["app-1", "app-2", "app-1"], "duplicates: app-1"),
    (["app-1", "team:audit"], "invalid log group names: team:audit"),
    (["logs/*"], "invalid log group names"),
    (["x" * 487], "leave no room"),
])
def test_log_group_names_validated(names, message):
    with pytest.raises(ConfigurationError, match=message):
        LogDeliveryConfig.from_inputs(
            cloudwatch_log_group_names=names,
            destination_bucket_arn="arn:aws:s3:::dest",
        )

@pytest.mark.parametrize("overrides", [
    {"tags": {"team": 1}},
    {"tags": ["team"]},
    {"name_prefix": ""},
    {"name_prefix": "has spaces"},
    {"name_prefix": "x" * 48},
    {"log_retention_days": 10},
])
def test_invalid_inputs_rejected(overrides):
    with pytest.raises(ConfigurationError):
        LogDeliveryConfig.from_inputs(
            cloudwatch_log_group_names=["app-1"],
            destination_bucket_arn="arn:aws:s3:::dest",
            **overrides,
        )

def test_from_context_reads_cdk_context():
    app = cdk.App(context={
        "cloudwatchLogGroupNames": ["app-1", "app-2"],
        "cloudwatchFilterPattern": "ERROR",
        "destinationHttpEndpoint": "https://logs.example.com/ingest",
        "httpEndpointName": "example",
        "tags": {"team": "platform"},
        "logRetentionDays": 30,
        "nameSuffix": "0123456789abcdef",
    })
    config = LogDeliveryConfig.from_context(app.node, environ={})

    assert config.cloudwatch_log_group_names == ("app-1", "app-2")
    assert config.cloudwatch_filter_pattern == "ERROR"
    assert config.destination == HttpDestination(url="https://logs.example.com/ingest", name="example")
    assert config.tags == {"team": "platform"}
    assert config.log_retention_days == 30
    assert config.name_suffix == "0123456789abcdef"

def test_from_context_parses_command_line_strings():
    # -c key=value always arrives as a string
    app = cdk.App(context={
        "cloudwatchLogGroupNames": "app-1, app-2,",
        "destinationBucketArn": "arn:aws:s3:::dest",
        "tags": '{"team": "platform"}',
        "logRetentionDays": "7",
    })
    config = LogDeliveryConfig.from_context(app.node, environ={})

    assert config.cloudwatch_log_group_names == ("app-1", "app-2")
    assert config.destination == S3Destination(bucket_arn="arn:aws:s3:::dest")
    assert config.tags == {"team": "platform"}
    assert config.log_retention_days == 7

def test_from_context_falls_back_to_environment():
    environ = {
        "CLOUDWATCH_LOG_GROUP_NAMES": "app-1,app-2",
        "DESTINATION_BUCKET_ARN": "arn:aws:s3:::dest",
        "S3_COMPRESSION_FORMAT": "GZIP",
        "NAME_PREFIX": "audit-export",
    }
    config = LogDeliveryConfig.from_context(cdk.App().node, environ=environ)

    assert config.cloudwatch_log_group_names == ("app-1", "app-2")
    assert config.destination == S3Destination(bucket_arn="arn:aws:s3:::dest", compression_format="GZIP")
    assert config.name_prefix == "audit-export"

def test_context_takes_precedence_over_environment():
    app = cdk.App(context={
        "cloudwatchLogGroupNames": "from-context",
        "destinationBucketArn": "arn:aws:s3:::dest",
    })
    config = LogDeliveryConfig.from_context(app.node, environ={"CLOUDWATCH_LOG_GROUP_NAMES": "from-env"})

    assert config.cloudwatch_log_group_names == ("from-context",)

@pytest.mark.parametrize("context, message", [
    ({"destinationBucketArn": "arn:aws:s3:::dest"}, "cloudwatchLogGroupNames"),
    ({"cloudwatchLogGroupNames": "app-1"}, "No destination"),
    ({"cloudwatchLogGroupNames": "app-1", "destinationBucketArn": "arn:aws:s3:::dest", "tags": "{not json"}, "tags"),
    ({"cloudwatchLogGroupNames": "app-1", "destinationBucketArn": "arn:aws:s3:::dest", "logRetentionDays": "two weeks"}, "logRetentionDays"),
])
def test_from_context_errors(context, message):
    with pytest.raises(ConfigurationError, match=message):
        LogDeliveryConfig.from_context(cdk.App(context=context).node, environ={})
