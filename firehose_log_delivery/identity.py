from typing import List, Optional

from aws_cdk import ArnFormat, Stack
from aws_cdk import aws_iam as iam
from constructs import Construct

from firehose_log_delivery.naming import NamingService


class IdentityConfig:
    """
    Declares the two IAM role/policy/attachment triples of the log delivery
    module.

    - Firehose delivery role, assumed by ``firehose.amazonaws.com``. Writes to
      the destination and error buckets, uses the module KMS key, writes its
      own diagnostics and reads the HTTP endpoint secret.
    - CloudWatch-to-Firehose role, assumed by ``logs.amazonaws.com`` on behalf
      of the subscription filters. Can only put records into this delivery
      stream.

    The roles are declared first because the KMS key policy has to name the
    Firehose role. The permission policies reference the key and the pipeline
    resources, so they are declared and attached afterwards through
    ``attach_firehose_policy`` and ``attach_subscription_policy``.

    Attributes:
        firehose_role (iam.Role): Role assumed by the delivery stream.
        cloudwatch_role (iam.Role): Role assumed by CloudWatch Logs.
        firehose_policy (iam.ManagedPolicy): Set by ``attach_firehose_policy``.
        cloudwatch_policy (iam.ManagedPolicy): Set by ``attach_subscription_policy``.
    """

    def __init__(self, scope: Construct, naming: NamingService, delivery_stream_name: str) -> None:
        self.scope = scope
        self.stack = Stack.of(scope)
        self.naming = naming
        self.delivery_stream_name = delivery_stream_name
        self.firehose_role = self._create_firehose_role()
        self.cloudwatch_role = self._create_cloudwatch_to_firehose_role()
        self.firehose_policy: Optional[iam.ManagedPolicy] = None
        self.cloudwatch_policy: Optional[iam.ManagedPolicy] = None

    @property
    def delivery_stream_arn(self) -> str:
        # Built from the name rather than the stream's Arn attribute so the
        # Firehose policy can exist before the stream
        return self.stack.format_arn(
            service="firehose",
            resource="deliverystream",
            resource_name=self.delivery_stream_name,
        )

    def _create_firehose_role(self) -> iam.Role:
        return iam.Role(
            self.scope, "FirehoseRole",
            role_name=self.naming.name("firehose-log-delivery"),
            description="Assumed by Firehose to deliver CloudWatch Logs",
            assumed_by=iam.ServicePrincipal(
                "firehose.amazonaws.com",
                conditions={
                    "StringEquals": {"sts:ExternalId": self.stack.account}
                },
            ),
        )

    def _create_cloudwatch_to_firehose_role(self) -> iam.Role:
        """
        Creates the role CloudWatch Logs assumes to forward subscription
        events into Firehose.

        The trust policy is limited to log groups of the deploying account and
        region, which stops another account's log groups from using this role
        (confused deputy).
        """
        return iam.Role(
            self.scope, "CloudwatchToFirehoseRole",
            role_name=self.naming.name("cloudwatch-to-firehose"),
            description="Assumed by CloudWatch Logs to put subscription events into Firehose",
            assumed_by=iam.ServicePrincipal(
                "logs.amazonaws.com",
                conditions={
                    "StringLike": {
                        "aws:SourceArn": self.stack.format_arn(
                            service="logs",
                            resource="*",
                            arn_format=ArnFormat.NO_RESOURCE_NAME,
                        )
                    }
                },
            ),
        )

    def firehose_policy_document(
        self,
        bucket_arns: List[str],
        key_arn: str,
        log_group_name: str,
        log_stream_name: str,
        secret_arn: str,
    ) -> iam.PolicyDocument:
        """
        Builds the permission document of the Firehose role.

        Args:
            bucket_arns: Buckets Firehose writes to. The error bucket, plus the
                destination bucket when delivering to S3.
            key_arn: Module KMS key ARN.
            log_group_name: Delivery diagnostics log group.
            log_stream_name: Delivery diagnostics log stream.
            secret_arn: HTTP endpoint credentials secret.

        Returns:
            iam.PolicyDocument: Least-privilege permissions for the role.
        """
        bucket_resources = []
        for bucket_arn in bucket_arns:
            bucket_resources.extend([bucket_arn, f"{bucket_arn}/*"])

        return iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    sid="S3Delivery",
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "s3:AbortMultipartUpload",
                        "s3:GetBucketLocation",
                        "s3:GetObject",
                        "s3:ListBucket",
                        "s3:ListBucketMultipartUploads",
                        "s3:PutObject",
                    ],
                    resources=bucket_resources,
                ),
                iam.PolicyStatement(
                    sid="KmsUsage",
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "kms:Decrypt",
                        "kms:GenerateDataKey",
                    ],
                    resources=[key_arn],
                ),
                iam.PolicyStatement(
                    sid="DeliveryLogging",
                    effect=iam.Effect.ALLOW,
                    actions=["logs:PutLogEvents"],
                    resources=[
                        self.stack.format_arn(
                            service="logs",
                            resource="log-group",
                            resource_name=f"{log_group_name}:log-stream:{log_stream_name}",
                            arn_format=ArnFormat.COLON_RESOURCE_NAME,
                        )
                    ],
                ),
                iam.PolicyStatement(
                    sid="HttpEndpointCredentials",
                    effect=iam.Effect.ALLOW,
                    actions=["secretsmanager:GetSecretValue"],
                    resources=[secret_arn],
                ),
                iam.PolicyStatement(
                    sid="HttpEndpointDelivery",
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "firehose:DescribeDeliveryStream",
                        "firehose:PutRecord",
                        "firehose:PutRecordBatch",
                    ],
                    resources=[self.delivery_stream_arn],
                ),
            ]
        )

    def subscription_policy_document(self) -> iam.PolicyDocument:
        return iam.PolicyDocument(
            statements=[
                iam.PolicyStatement(
                    sid="PutSubscriptionEvents",
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "firehose:PutRecord",
                        "firehose:PutRecordBatch",
                    ],
                    resources=[self.delivery_stream_arn],
                )
            ]
        )

    def attach_firehose_policy(self, **document_args) -> iam.ManagedPolicy:
        """Declares the Firehose permission policy and attaches it to the Firehose role."""
        self.firehose_policy = self._attach(
            "FirehosePolicy",
            self.naming.name("firehose-log-delivery"),
            "Firehose delivery permissions",
            self.firehose_policy_document(**document_args),
            self.firehose_role,
        )
        return self.firehose_policy

    def attach_subscription_policy(self) -> iam.ManagedPolicy:
        """Declares the subscription permission policy and attaches it to the CloudWatch role."""
        self.cloudwatch_policy = self._attach(
            "CloudwatchToFirehosePolicy",
            self.naming.name("cloudwatch-to-firehose"),
            "CloudWatch Logs subscription permissions",
            self.subscription_policy_document(),
            self.cloudwatch_role,
        )
        return self.cloudwatch_policy

    def _attach(
        self,
        construct_id: str,
        policy_name: str,
        description: str,
        document: iam.PolicyDocument,
        role: iam.Role,
    ) -> iam.ManagedPolicy:
        policy = iam.ManagedPolicy(
            self.scope, construct_id,
            managed_policy_name=policy_name,
            description=description,
            document=document,
        )
        # Rendered as the policy's Roles list: one binding per (role, policy)
        policy.attach_to_role(role)
        return policy
