#!/usr/bin/env python3
"""
Create the LocalStack resources the ingest worker needs and wire S3 uploads to
the queue.
Usage: python scripts/bootstrap_localstack.py

Creates the trades bucket, the ingest queue and its dead-letter queue, lets the
bucket publish to the queue, and sends ObjectCreated events for the trades/
and positions/ prefixes. Safe to run more than once.
"""

import json
import logging
import sys

from botocore.exceptions import BotoCoreError, ClientError

from ledger_ingest.config import load_config
from ledger_ingest.services.aws import aws_client

logger = logging.getLogger("ledger_ingest.bootstrap")

_EXISTING_BUCKET_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}


def ensure_bucket(s3, bucket: str, region: str) -> None:
    kwargs = {"Bucket": bucket}
    if region and region != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        s3.create_bucket(**kwargs)
        logger.info("bucket_created", extra={"bucket": bucket})
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") not in _EXISTING_BUCKET_CODES:
            raise
        logger.info("bucket_exists", extra={"bucket": bucket})


def ensure_queue(sqs, queue_url: str) -> str:
    """Create the queue named by the last segment of its URL; returns its ARN."""
    name = queue_url.rstrip("/").rsplit("/", 1)[-1]
    url = sqs.create_queue(QueueName=name)["QueueUrl"]
    attrs = sqs.get_queue_attributes(QueueUrl=url, AttributeNames=["QueueArn"])
    return attrs["Attributes"]["QueueArn"]


def allow_bucket_to_send(sqs, queue_url: str, queue_arn: str, bucket: str) -> None:
    policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowS3ToSendMessage",
                "Effect": "Allow",
                "Principal": {"Service": "s3.amazonaws.com"},
                "Action": "sqs:SendMessage",
                "Resource": queue_arn,
                "Condition": {"ArnEquals": {"aws:SourceArn": f"arn:aws:s3:::{bucket}"}},
            }
        ],
    }
    sqs.set_queue_attributes(QueueUrl=queue_url, Attributes={"Policy": json.dumps(policy)})


def wire_notifications(s3, bucket: str, queue_arn: str, prefixes) -> None:
    s3.put_bucket_notification_configuration(
        Bucket=bucket,
        NotificationConfiguration={
            "QueueConfigurations": [
                {
                    "Id": f"ingest-{prefix}",
                    "Events": ["s3:ObjectCreated:*"],
                    "QueueArn": queue_arn,
                    "Filter": {"Key": {"FilterRules": [{"Name": "prefix", "Value": f"{prefix}/"}]}},
                }
                for prefix in prefixes
            ]
        },
    )


def main() -> int:
    config = load_config()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    s3 = aws_client("s3", config)
    sqs = aws_client("sqs", config)
    try:
        ensure_bucket(s3, config.trades_bucket, config.aws_region)
        queue_arn = ensure_queue(sqs, config.queue_url)
        ensure_queue(sqs, config.dlq_url)
        allow_bucket_to_send(sqs, config.queue_url, queue_arn, config.trades_bucket)
        wire_notifications(s3, config.trades_bucket, queue_arn, (config.trades_prefix, config.positions_prefix))
    except (ClientError, BotoCoreError) as e:
        print(f"Bootstrap failed: {e}", file=sys.stderr)
        return 1
    print(f"Bucket {config.trades_bucket} -> {config.queue_url} (DLQ {config.dlq_url})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
