"""Where the Parquet bytes live: a local path, an HTTP(S) URL or an S3 object."""
from dataclasses import dataclass
from typing import Union
from urllib.parse import unquote, urlparse

from .config import DEFAULT_REGION
from .errors import SourceError


@dataclass(frozen=True)
class LocalPath:
    path: str

    def __str__(self):
        return self.path


@dataclass(frozen=True)
class HttpUrl:
    url: str

    def __str__(self):
        return self.url


@dataclass(frozen=True)
class ObjectStoreUrl:
    bucket: str
    key: str
    region: str = DEFAULT_REGION

    def __str__(self):
        return f"s3://{self.bucket}/{self.key}"


SourceLocation = Union[LocalPath, HttpUrl, ObjectStoreUrl]


def parse_location(text: str, region: str = DEFAULT_REGION) -> SourceLocation:
    """Classify the FILE argument.

    Strings without a scheme (or with ``file://``) are local paths. Windows
    drive letters parse as a one-letter scheme, so those fall through to local
    paths as well.
    """
    if not text:
        raise SourceError(text, "empty location")

    parsed = urlparse(text)
    scheme = parsed.scheme.lower()

    if scheme in ("http", "https"):
        if not parsed.netloc:
            raise SourceError(text, "URL has no host")
        return HttpUrl(text)

    if scheme in ("s3", "s3a"):
        bucket = parsed.netloc
        key = unquote(parsed.path.lstrip("/"))
        if not bucket:
            raise SourceError(text, "object storage URL has no bucket")
        if not key or key.endswith("/"):
            raise SourceError(text, "object storage URL must name an object key")
        return ObjectStoreUrl(bucket=bucket, key=key, region=region)

    if scheme == "file":
        return LocalPath(unquote(parsed.path))

    if scheme and len(scheme) > 1:
        raise SourceError(text, f"unsupported scheme {scheme!r}")

    return LocalPath(text)
