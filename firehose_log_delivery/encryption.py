from aws_cdk import Duration, RemovalPolicy
from aws_cdk import aws_iam as iam
from aws_cdk import aws_kms as kms
from constructs import Construct

from firehose_log_delivery.naming import NamingService

ALIAS_PREFIX = "alias/cloud-platform-firehose-log-delivery"


class EncryptionConfig:
    """
    Customer-managed KMS key used for Firehose server-side encryption and
    for the HTTP endpoint secret.

    Key policy:
        1. Account root: ``kms:*`` (added by CDK as the default admin
           statement, lets IAM policies in the account govern the key)
        2. Firehose role: encrypt/decrypt/re-encrypt/generate data keys and
           describe, on this key only

    Example:
        encryption = EncryptionConfig(self, naming, identity.firehose_role)
        encryption.key_arn
    """

    def __init__(self, scope: Construct, naming: NamingService, firehose_role: iam.IRole) -> None:
        self.scope = scope
        self.naming = naming
        self.key = self._create_key()
        self.alias = self._create_alias()
        self._grant_firehose_role(firehose_role)

    @property
    def key_arn(self) -> str:
        return self.key.key_arn

    def _create_key(self) -> kms.Key:
        return kms.Key(
            self.scope, "FirehoseKey",
            description="Firehose log delivery encryption key",
            key_spec=kms.KeySpec.SYMMETRIC_DEFAULT,
            enable_key_rotation=True,
            pending_window=Duration.days(7),
            removal_policy=RemovalPolicy.DESTROY,
        )

    def _create_alias(self) -> kms.Alias:
        return kms.Alias(
            self.scope, "FirehoseKeyAlias",
            alias_name=self.naming.name(ALIAS_PREFIX),
            target_key=self.key,
        )

    def _grant_firehose_role(self, firehose_role: iam.IRole) -> None:
        self.key.add_to_resource_policy(
            iam.PolicyStatement(
                sid="AllowFirehoseRole",
                effect=iam.Effect.ALLOW,
                principals=[iam.ArnPrincipal(firehose_role.role_arn)],
                actions=[
                    "kms:Encrypt",
                    "kms:Decrypt",
                    "kms:ReEncrypt*",
                    "kms:GenerateDataKey*",
                    "kms:DescribeKey",
                ],
                # "*" in a key policy is the key the policy is attached to
                resources=["*"],
            )
        )
