from aws_cdk import Aspects, CfnOutput, Fn, Stack
from cdk_nag import AwsSolutionsChecks, NagSuppressions
from constructs import Construct

from firehose_log_delivery.config import LogDeliveryConfig
from firehose_log_delivery.log_delivery_construct import LogDeliveryModule


class LogDeliveryStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, *, config: LogDeliveryConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.log_delivery = LogDeliveryModule(self, "LogDelivery", config=config)
        module = self.log_delivery

        CfnOutput(
            self, "DeliveryStreamName",
            value=module.delivery_stream_name,
            description="Firehose delivery stream name"
        )
        CfnOutput(
            self, "DeliveryStreamArn",
            value=module.delivery_stream_arn,
            description="Firehose delivery stream ARN"
        )
        CfnOutput(
            self, "KmsKeyArn",
            value=module.kms_key_arn,
            description="KMS key ARN for Firehose log delivery"
        )
        CfnOutput(
            self, "FirehoseRoleName",
            value=module.firehose_role_name,
            description="IAM role assumed by Firehose"
        )
        CfnOutput(
            self, "FirehoseRoleArn",
            value=module.firehose_role_arn,
            description="IAM role ARN assumed by Firehose"
        )
        CfnOutput(
            self, "CloudwatchToFirehoseRoleName",
            value=module.cloudwatch_to_firehose_role_name,
            description="IAM role assumed by CloudWatch Logs subscriptions"
        )
        CfnOutput(
            self, "CloudwatchToFirehoseRoleArn",
            value=module.cloudwatch_to_firehose_role_arn,
            description="IAM role ARN assumed by CloudWatch Logs subscriptions"
        )
        CfnOutput(
            self, "SubscriptionFilterNames",
            value=Fn.join(",", module.subscription_filter_names),
            description="CloudWatch Logs subscription filter names"
        )
        CfnOutput(
            self, "SecretArn",
            value=module.secret_arn,
            description="Secrets Manager secret for HTTP endpoint credentials"
        )
        CfnOutput(
            self, "CloudwatchLogGroupName",
            value=module.cloudwatch_log_group_name,
            description="Firehose delivery diagnostics log group"
        )

        # CDK-Nag suppressions for necessary exceptions
        NagSuppressions.add_resource_suppressions(
            module.pipeline.secret,
            [
                {
                    "id": "AwsSolutions-SMG4",
                    "reason": "The HTTP endpoint credential is issued by the endpoint owner and rotated out of band"
                }
            ],
            apply_to_children=True
        )
        NagSuppressions.add_resource_suppressions(
            module.pipeline.error_bucket,
            [
                {
                    "id": "AwsSolutions-S1",
                    "reason": "Error bucket only holds failed deliveries for 14 days; access logging is not required"
                }
            ],
            apply_to_children=True
        )
        NagSuppressions.add_stack_suppressions(
            self,
            [
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "AWSLambdaBasicExecutionRole is used by the CDK auto-delete-objects custom resource"
                },
                {
                    "id": "AwsSolutions-IAM5",
                    "reason": "S3 object-level access requires /*; KMS key policy '*' refers to the key itself"
                },
                {
                    "id": "AwsSolutions-L1",
                    "reason": "Runtime of the CDK managed auto-delete-objects custom resource is set by CDK"
                },
            ]
        )

        # Apply AWS Solutions security checks to this stack
        Aspects.of(self).add(AwsSolutionsChecks())
