from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.config import Config

from ...settings import settings


def botocore_config(*, connect_timeout: float = 2, read_timeout: float = 10, max_attempts: int = 10) -> Config:
    """
    Shared botocore config for every AWS client in the service.

    botocore's adaptive retries handle throttling at the SDK layer; `ddb_call`
    adds a narrow app-layer retry on top. SES passes `max_attempts=1` so a send
    never blocks a request for longer than its timeout.
    """
    mode = "adaptive" if max_attempts > 1 else "standard"
    return Config(
        retries={"max_attempts": int(max_attempts), "mode": mode},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


@lru_cache(maxsize=None)
def _aws(kind: str, service: str):
    factory = boto3.resource if kind == "resource" else boto3.client
    return factory(service, region_name=settings.aws_region, config=botocore_config())


def dynamodb_resource():
    return _aws("resource", "dynamodb")


def dynamodb_client():
    return _aws("client", "dynamodb")
