"""Run configuration, assembled once from the command line and the environment."""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_CONCURRENT_FETCHES = 8
DEFAULT_REGION = "us-east-1"


@dataclass(frozen=True)
class S3Settings:
    region: str = DEFAULT_REGION
    endpoint_url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "S3Settings":
        return cls(
            region=environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or DEFAULT_REGION,
            endpoint_url=environ.get("AWS_ENDPOINT_URL_S3") or environ.get("AWS_ENDPOINT_URL"),
            access_key=environ.get("AWS_ACCESS_KEY_ID"),
            secret_key=environ.get("AWS_SECRET_ACCESS_KEY"),
            session_token=environ.get("AWS_SESSION_TOKEN"),
            profile=environ.get("AWS_PROFILE"),
        )


@dataclass(frozen=True)
class RunConfig:
    timeout: float = DEFAULT_TIMEOUT
    max_concurrent_fetches: int = DEFAULT_MAX_CONCURRENT_FETCHES
    s3: S3Settings = field(default_factory=S3Settings)

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be at least 1")

    @classmethod
    def from_args(cls, args, environ: Mapping[str, str] = os.environ) -> "RunConfig":
        return cls(
            timeout=args.timeout,
            max_concurrent_fetches=args.concurrency,
            s3=S3Settings.from_env(environ),
        )


def default_timeout(environ: Mapping[str, str] = os.environ) -> float:
    value = environ.get("PARQUET2JSON_TIMEOUT")
    if not value:
        return DEFAULT_TIMEOUT
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"PARQUET2JSON_TIMEOUT must be a number of seconds, got {value!r}")
