import hashlib
import json
import logging
from dataclasses import dataclass
from typing import List, Sequence

from aws_cdk import Duration, RemovalPolicy
from aws_cdk import aws_kinesisfirehose as firehose
from aws_cdk import aws_logs as logs
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_secretsmanager as secretsmanager
from constructs import Construct

from firehose_log_delivery.config import HttpDestination, LogDeliveryConfig, S3Destination
from firehose_log_delivery.encryption import EncryptionConfig
from firehose_log_delivery.identity import IdentityConfig
from firehose_log_delivery.naming import NamingService

logger = logging.getLogger(__name__)

LOG_STREAM_NAME = "DestinationDelivery"

S3_PREFIX = "logs/!{timestamp:yyyy/MM/dd}/"
S3_ERROR_OUTPUT_PREFIX = "errors/!{firehose:error-output-type}/!{timestamp:yyyy/MM/dd}/"

RETENTION_DAYS = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    120: logs.RetentionDays.FOUR_MONTHS,
    150: logs.RetentionDays.FIVE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
    400: logs.RetentionDays.THIRTEEN_MONTHS,
    545: logs.RetentionDays.EIGHTEEN_MONTHS,
    731: logs.RetentionDays.TWO_YEARS,
    1096: logs.RetentionDays.THREE_YEARS,
    1827: logs.RetentionDays.FIVE_YEARS,
    2192: logs.RetentionDays.SIX_YEARS,
    2557: logs.RetentionDays.SEVEN_YEARS,
    2922: logs.RetentionDays.EIGHT_YEARS,
    3288: logs.RetentionDays.NINE_YEARS,
    3653: logs.RetentionDays.TEN_YEARS,
}


@dataclass(frozen=True)
class SubscriptionFilterSpec:
    log_group_name: str
    filter_name: str
    construct_id: str


def plan_subscription_filters(
    log_group_names: Sequence[str], naming: NamingService
) -> List[SubscriptionFilterSpec]:
    """
    Maps log group names to subscription filter identities, one each, in
    input order.

    Construct ids hash the raw name: ids cannot hold ``/`` and the
    constructs library rewrites it, so ``a/b`` and ``a--b`` would collide.
    """
    return [
        SubscriptionFilterSpec(
            log_group_name=name,
            filter_name=naming.name(name, "firehose"),
            construct_id="Filter" + hashlib.sha256(name.encode("utf-8")).hexdigest()[:16],
        )
        for name in log_group_names
    ]


class DeliveryPipeline:
    """
    Declares the data path of the module: the Firehose delivery stream and
    everything hanging off it.

    Resources:
        - Error bucket: dead-letter sink for failed HTTP endpoint deliveries.
          Always declared, also when delivering to S3.
        - Diagnostics log group and stream for the delivery stream.
        - Secrets Manager secret holding the HTTP endpoint credentials. Only
          its existence is managed here, the value is set out of band.
        - Delivery stream, S3 or HTTP endpoint destination.
        - One subscription filter per configured log group.

    The Firehose and subscription permission policies are attached through
    ``identity`` once the resources they reference exist. The stream waits on
    the Firehose policy and every filter waits on the subscription policy,
    otherwise CloudFormation can create them before their roles are usable.

    Args:
        scope: Construct the resources are declared in.
        naming: Suffix provider shared with the rest of the module.
        config: Validated module inputs.
        identity: Roles created ahead of the key.
        encryption: Module KMS key.
    """

    def __init__(
        self,
        scope: Construct,
        naming: NamingService,
        config: LogDeliveryConfig,
        identity: IdentityConfig,
        encryption: EncryptionConfig,
    ) -> None:
        self.scope = scope
        self.naming = naming
        self.config = config
        self.identity = identity
        self.encryption = encryption
        self.delivery_stream_name = identity.delivery_stream_name

        self.error_bucket = self._create_error_bucket()
        self.log_group, self.log_stream = self._create_log_group()
        self.secret = self._create_secret()

        identity.attach_firehose_policy(
            bucket_arns=self._delivery_bucket_arns(),
            key_arn=encryption.key_arn,
            log_group_name=self.log_group.log_group_name,
            log_stream_name=self.log_stream.log_stream_name,
            secret_arn=self.secret.secret_arn,
        )
        self.delivery_stream = self._create_delivery_stream()
        self.delivery_stream.node.add_dependency(identity.firehose_policy)

        identity.attach_subscription_policy()
        self.subscription_filters = self._create_subscription_filters()

    @property
    def destination(self):
        return self.config.destination

    def _delivery_bucket_arns(self) -> List[str]:
        bucket_arns = [self.error_bucket.bucket_arn]
        if isinstance(self.destination, S3Destination):
            bucket_arns.append(self.destination.bucket_arn)
        return bucket_arns

    def _create_error_bucket(self) -> s3.Bucket:
        """
        Creates the bucket that receives records the HTTP endpoint rejected
        after retries ran out.

        Objects expire after 14 days and unfinished multipart uploads are
        aborted after 7. The bucket empties itself on stack deletion so that
        teardown is never blocked by leftover failed records.
        """
        return s3.Bucket(
            self.scope, "ErrorBucket",
            bucket_name=self.naming.name("cloud-platform-firehose-errors"),
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            lifecycle_rules=[
                s3.LifecycleRule(
                    id="expire-failed-deliveries",
                    expiration=Duration.days(14),
                ),
                s3.LifecycleRule(
                    id="abort-incomplete-multipart-uploads",
                    abort_incomplete_multipart_upload_after=Duration.days(7),
                ),
            ],
            removal_policy=RemovalPolicy.DESTROY,
            auto_delete_objects=True,
        )

    def _create_log_group(self):
        log_group = logs.LogGroup(
            self.scope, "DeliveryLogGroup",
            log_group_name=f"/aws/kinesisfirehose/{self.delivery_stream_name}",
            retention=RETENTION_DAYS[self.config.log_retention_days],
            removal_policy=RemovalPolicy.DESTROY,
        )
        log_stream = logs.LogStream(
            self.scope, "DeliveryLogStream",
            log_group=log_group,
            log_stream_name=LOG_STREAM_NAME,
            removal_policy=RemovalPolicy.DESTROY,
        )
        return log_group, log_stream

    def _create_secret(self) -> secretsmanager.Secret:
        # Firehose reads the endpoint access key from the "api_key" field.
        # The generated value is a placeholder until the real key is put.
        return secretsmanager.Secret(
            self.scope, "HttpEndpointSecret",
            secret_name=self.naming.name(self.config.name_prefix, "http-endpoint"),
            description="Credentials for the Firehose HTTP endpoint destination",
            encryption_key=self.encryption.key,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({}),
                generate_string_key="api_key",
                exclude_punctuation=True,
            ),
            # CloudFormation deletes secrets without a recovery window
            removal_policy=RemovalPolicy.DESTROY,
        )

    def _logging_options(self) -> firehose.CfnDeliveryStream.CloudWatchLoggingOptionsProperty:
        return firehose.CfnDeliveryStream.CloudWatchLoggingOptionsProperty(
            enabled=True,
            log_group_name=self.log_group.log_group_name,
            log_stream_name=self.log_stream.log_stream_name,
        )

    def _s3_destination_configuration(
        self, destination: S3Destination
    ) -> firehose.CfnDeliveryStream.ExtendedS3DestinationConfigurationProperty:
        return firehose.CfnDeliveryStream.ExtendedS3DestinationConfigurationProperty(
            bucket_arn=destination.bucket_arn,
            role_arn=self.identity.firehose_role.role_arn,
            buffering_hints=firehose.CfnDeliveryStream.BufferingHintsProperty(
                interval_in_seconds=60,
                size_in_m_bs=64,
            ),
            compression_format=destination.compression_format,
            prefix=S3_PREFIX,
            error_output_prefix=S3_ERROR_OUTPUT_PREFIX,
            dynamic_partitioning_configuration=firehose.CfnDeliveryStream.DynamicPartitioningConfigurationProperty(
                enabled=False,
            ),
            cloud_watch_logging_options=self._logging_options(),
        )

    def _http_destination_configuration(
        self, destination: HttpDestination
    ) -> firehose.CfnDeliveryStream.HttpEndpointDestinationConfigurationProperty:
        """
        Builds the HTTP endpoint destination.

        Firehose retries a failing endpoint for up to 300 seconds, then backs
        the failed records up to the error bucket, GZIP compressed. Request
        bodies are GZIP encoded and the access key is read from the secret.
        """
        role_arn = self.identity.firehose_role.role_arn
        return firehose.CfnDeliveryStream.HttpEndpointDestinationConfigurationProperty(
            endpoint_configuration=firehose.CfnDeliveryStream.HttpEndpointConfigurationProperty(
                url=destination.url,
                name=destination.name,
            ),
            role_arn=role_arn,
            buffering_hints=firehose.CfnDeliveryStream.BufferingHintsProperty(
                interval_in_seconds=60,
                size_in_m_bs=5,
            ),
            retry_options=firehose.CfnDeliveryStream.RetryOptionsProperty(
                duration_in_seconds=300,
            ),
            s3_backup_mode="FailedDataOnly",
            s3_configuration=firehose.CfnDeliveryStream.S3DestinationConfigurationProperty(
                bucket_arn=self.error_bucket.bucket_arn,
                role_arn=role_arn,
                buffering_hints=firehose.CfnDeliveryStream.BufferingHintsProperty(
                    interval_in_seconds=400,
                    size_in_m_bs=10,
                ),
                compression_format="GZIP",
            ),
            request_configuration=firehose.CfnDeliveryStream.HttpEndpointRequestConfigurationProperty(
                content_encoding="GZIP",
            ),
            secrets_manager_configuration=firehose.CfnDeliveryStream.SecretsManagerConfigurationProperty(
                enabled=True,
                secret_arn=self.secret.secret_arn,
                role_arn=role_arn,
            ),
            cloud_watch_logging_options=self._logging_options(),
        )

    def _create_delivery_stream(self) -> firehose.CfnDeliveryStream:
        destination = self.destination
        s3_configuration = None
        http_configuration = None
        if isinstance(destination, S3Destination):
            s3_configuration = self._s3_destination_configuration(destination)
        else:
            http_configuration = self._http_destination_configuration(destination)
        logger.info("Delivery stream %s delivers to %s", self.delivery_stream_name, destination.kind)

        return firehose.CfnDeliveryStream(
            self.scope, "DeliveryStream",
            delivery_stream_name=self.delivery_stream_name,
            delivery_stream_type="DirectPut",
            delivery_stream_encryption_configuration_input=firehose.CfnDeliveryStream.DeliveryStreamEncryptionConfigurationInputProperty(
                key_type="CUSTOMER_MANAGED_CMK",
                key_arn=self.encryption.key_arn,
            ),
            extended_s3_destination_configuration=s3_configuration,
            http_endpoint_destination_configuration=http_configuration,
        )

    def _create_subscription_filters(self) -> List[logs.CfnSubscriptionFilter]:
        # Child ids derive from the log group names only, so reordering the
        # input keeps every filter's logical id
        container = Construct(self.scope, "SubscriptionFilters")
        filters = []
        for spec in plan_subscription_filters(self.config.cloudwatch_log_group_names, self.naming):
            subscription_filter = logs.CfnSubscriptionFilter(
                container, spec.construct_id,
                log_group_name=spec.log_group_name,
                filter_name=spec.filter_name,
                filter_pattern=self.config.cloudwatch_filter_pattern,
                destination_arn=self.delivery_stream.attr_arn,
                role_arn=self.identity.cloudwatch_role.role_arn,
            )
            subscription_filter.node.add_dependency(self.identity.cloudwatch_policy)
            filters.append(subscription_filter)
        logger.info("Declared %d subscription filter(s)", len(filters))
        return filters
