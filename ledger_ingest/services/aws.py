"""
boto3 client construction shared by the S3 and SQS adapters.
"""

from __future__ import annotations

import boto3
from botocore.config import Config as BotoConfig

from ledger_ingest.config import IngestConfig


def aws_client(service: str, config: IngestConfig, read_timeout: int = 30):
    """
    Build a boto3 client against AWS or LocalStack.

    Timeouts are bounded so no fetch or queue call can hang the worker.
    `read_timeout` must exceed the long-poll wait for SQS receives.
    """
    boto_config = BotoConfig(
        connect_timeout=5,
        read_timeout=read_timeout,
        retries={"max_attempts": 3, "mode": "standard"},
        # LocalStack needs path-style bucket URLs
        s3={"addressing_style": "path"},
    )
    return boto3.client(
        service,
        region_name=config.aws_region,
        endpoint_url=config.aws_endpoint_url,
        aws_access_key_id=config.aws_access_key_id,
        aws_secret_access_key=config.aws_secret_access_key,
        config=boto_config,
    )
