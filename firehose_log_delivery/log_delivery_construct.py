from typing import List

from aws_cdk import Names, Stack, Tags, Token
from constructs import Construct

from firehose_log_delivery.config import LogDeliveryConfig
from firehose_log_delivery.delivery_pipeline import DeliveryPipeline
from firehose_log_delivery.encryption import EncryptionConfig
from firehose_log_delivery.identity import IdentityConfig
from firehose_log_delivery.naming import NamingService


class LogDeliveryModule(Construct):
    """
    Subscribes CloudWatch Log Groups to a Firehose delivery stream that
    forwards to an S3 bucket or an HTTP endpoint.

    Declaration order follows the dependencies between the sub-graphs:
    naming, then the IAM roles, then the KMS key (its policy names the
    Firehose role), then the pipeline, which attaches the role policies once
    the resources they reference exist.

    Usage:
        config = LogDeliveryConfig.from_inputs(
            cloudwatch_log_group_names=["app-1", "app-2"],
            destination_bucket_arn="arn:aws:s3:::dest",
        )
        module = LogDeliveryModule(self, "LogDelivery", config=config)
        module.delivery_stream_arn
    """

    def __init__(self, scope: Construct, construct_id: str, *, config: LogDeliveryConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.naming = NamingService(config.name_suffix, seed=self._suffix_seed())
        self.identity = IdentityConfig(self, self.naming, self.naming.name(config.name_prefix))
        self.encryption = EncryptionConfig(self, self.naming, self.identity.firehose_role)
        self.pipeline = DeliveryPipeline(self, self.naming, config, self.identity, self.encryption)

        for key, value in config.tags.items():
            Tags.of(self).add(key, value)

    def _suffix_seed(self) -> str:
        # Path plus concrete account and region; stable across synths
        stack = Stack.of(self)
        parts = [Names.unique_id(self)]
        for value in (stack.account, stack.region):
            if not Token.is_unresolved(value):
                parts.append(value)
        return "/".join(parts)

    @property
    def suffix(self) -> str:
        return self.naming.suffix

    @property
    def delivery_stream_name(self) -> str:
        return self.pipeline.delivery_stream.ref

    @property
    def delivery_stream_arn(self) -> str:
        return self.pipeline.delivery_stream.attr_arn

    @property
    def kms_key_arn(self) -> str:
        return self.encryption.key_arn

    @property
    def firehose_role_name(self) -> str:
        return self.identity.firehose_role.role_name

    @property
    def firehose_role_arn(self) -> str:
        return self.identity.firehose_role.role_arn

    @property
    def cloudwatch_to_firehose_role_name(self) -> str:
        return self.identity.cloudwatch_role.role_name

    @property
    def cloudwatch_to_firehose_role_arn(self) -> str:
        return self.identity.cloudwatch_role.role_arn

    @property
    def subscription_filter_names(self) -> List[str]:
        return [subscription_filter.filter_name for subscription_filter in self.pipeline.subscription_filters]

    @property
    def secret_arn(self) -> str:
        return self.pipeline.secret.secret_arn

    @property
    def cloudwatch_log_group_name(self) -> str:
        return self.pipeline.log_group.log_group_name
