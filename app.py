#!/usr/bin/env python3
"""
Synthesise the Firehose log delivery stack.

Inputs are read from CDK context, falling back to environment variables:

    cdk synth \
        -c cloudwatchLogGroupNames=app-1,app-2 \
        -c destinationBucketArn=arn:aws:s3:::dest \
        -c nameSuffix=0123456789abcdef
"""
import logging
import os

import aws_cdk as cdk

from firehose_log_delivery.config import LogDeliveryConfig
from firehose_log_delivery.log_delivery_stack import LogDeliveryStack

logging.basicConfig(level=logging.INFO)

app = cdk.App()

env = cdk.Environment(
    account=os.environ.get("CDK_DEFAULT_ACCOUNT"),
    region=os.environ.get("CDK_DEFAULT_REGION"),
)

config = LogDeliveryConfig.from_context(app.node)

stack_name = app.node.try_get_context("stackName") or os.getenv("STACK_NAME", "FirehoseLogDeliveryStack")

stack = LogDeliveryStack(
    app,
    stack_name,
    env=env,
    config=config,
    description="CloudWatch Logs to Firehose log delivery",
)

app.synth()
