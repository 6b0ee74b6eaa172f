"""
Range-addressed access to a Parquet file.

A RangeSource answers two questions, "how long is the file" and "give me
``length`` bytes at ``offset``", for one of three backends:

    LocalFileSource   seek + read on an open file handle
    HttpRangeSource   ``Range: bytes=o-e`` GET requests (httpx)
    S3RangeSource     ranged ``GetObject`` calls (boto3)

Each ``read_range`` is exactly one round trip to the backend. Nothing is
retried: a columnar reader issues a small, known set of ranges, and a
half-fetched row group is worse than an early failure.

The remote variants learn the file length from a suffix-range request for the
last ``TAIL_PROBE_SIZE`` bytes. Those bytes are the Parquet trailer, so they
are kept and the first metadata read costs no extra request.
"""
import logging
import os
import re
import threading
import time

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from .errors import SourceError, TransientIOError
from .location import HttpUrl, LocalPath, ObjectStoreUrl

logger = logging.getLogger(__name__)

TAIL_PROBE_SIZE = 8
READ_CHUNK_SIZE = 1 << 20

_CONTENT_RANGE_RE = re.compile(r"bytes (?:(\d+)-(\d+)|\*)/(\d+|\*)")


def parse_content_range(value):
    """Parse ``bytes S-E/T`` (or ``bytes */T``) into ``(start, end, total)``.

    ``start``/``end`` are None for the unsatisfied-range form.
    """
    match = _CONTENT_RANGE_RE.fullmatch(value.strip()) if value else None
    if match is None or match.group(3) == "*":
        return None
    start, end, total = match.groups()
    return (
        int(start) if start is not None else None,
        int(end) if end is not None else None,
        int(total),
    )


def _range_header(offset, length):
    return f"bytes={offset}-{offset + length - 1}"


class RangeSource:
    backend = None
    is_remote = False

    def __init__(self, location):
        self.location = location
        self.bytes_fetched = 0
        self.requests = 0
        self._length = None
        self._tail = b""
        self._tail_offset = 0
        self._stats_lock = threading.Lock()

    def length(self):
        if self._length is None:
            self._length = self._fetch_length()
            logger.debug("%s: %s is %d bytes", self.backend, self.location, self._length)
        return self._length

    def read_range(self, offset, length):
        total = self.length()
        if offset < 0 or length < 0 or offset + length > total:
            raise ValueError(
                f"range [{offset}, {offset + length}) is outside {self.location} ({total} bytes)"
            )
        if length == 0:
            return b""
        if self._tail and offset >= self._tail_offset:
            start = offset - self._tail_offset
            return self._tail[start:start + length]

        logger.debug("%s: reading %d bytes at offset %d", self.backend, length, offset)
        data = self._fetch(offset, length)
        self._record(len(data))
        if len(data) != length:
            raise SourceError(
                str(self.location),
                f"short read at offset {offset}: expected {length} bytes, got {len(data)}",
            )
        return data

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def _record(self, size):
        with self._stats_lock:
            self.bytes_fetched += size
            self.requests += 1

    def _keep_tail(self, offset, data):
        self._tail_offset = offset
        self._tail = data

    def _fetch_length(self):
        raise NotImplementedError

    def _fetch(self, offset, length):
        raise NotImplementedError


class LocalFileSource(RangeSource):
    backend = "file"

    def __init__(self, location: LocalPath):
        super().__init__(location)
        try:
            self._file = open(location.path, "rb")
        except OSError as exc:
            raise SourceError(location.path, exc.strerror or str(exc)) from exc
        self._lock = threading.Lock()

    def _fetch_length(self):
        return os.fstat(self._file.fileno()).st_size

    def _fetch(self, offset, length):
        with self._lock:
            self._file.seek(offset)
            return self._file.read(length)

    def close(self):
        self._file.close()


class HttpRangeSource(RangeSource):
    backend = "http"
    is_remote = True

    def __init__(self, location: HttpUrl, timeout, client=None):
        super().__init__(location)
        self.url = location.url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"Accept-Encoding": "identity"},
        )

    def _get(self, range_value, offset=None, length=None):
        """GET one range within ``timeout``, body included.

        Only 206 bodies are read; anything else is judged on its headers.
        """
        deadline = time.monotonic() + self.timeout
        try:
            with self._client.stream("GET", self.url, headers={"Range": range_value}) as response:
                if response.status_code != 206:
                    return response, b""
                chunks = []
                for chunk in response.iter_bytes():
                    if time.monotonic() > deadline:
                        raise httpx.ReadTimeout(
                            f"range read took longer than {self.timeout}s", request=response.request
                        )
                    chunks.append(chunk)
                return response, b"".join(chunks)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientIOError(
                self.url, self.backend, f"{type(exc).__name__}: {exc}", offset, length
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SourceError(self.url, f"{type(exc).__name__}: {exc}") from exc

    def _reject(self, response):
        if response.status_code == 200:
            reason = "server ignored the Range header (range requests not supported)"
        else:
            reason = f"HTTP {response.status_code} {response.reason_phrase}".rstrip()
        raise SourceError(self.url, reason)

    def _fetch_length(self):
        response, content = self._get(f"bytes=-{TAIL_PROBE_SIZE}")
        content_range = parse_content_range(response.headers.get("Content-Range"))
        if response.status_code == 416 and content_range is not None:
            self._record(0)
            return content_range[2]
        if response.status_code != 206:
            self._reject(response)
        if content_range is None or content_range[0] is None:
            raise SourceError(self.url, "response has no usable Content-Range header")
        start, _, total = content_range
        self._record(len(content))
        self._keep_tail(start, content)
        return total

    def _fetch(self, offset, length):
        response, content = self._get(_range_header(offset, length), offset, length)
        if response.status_code != 206:
            self._reject(response)
        return content

    def close(self):
        if self._owns_client:
            self._client.close()


def create_s3_client(location: ObjectStoreUrl, settings, timeout):
    """Build a boto3 S3 client from injected settings.

    Credentials come from the settings first, then boto3's own chain. Finding
    none at all is a SourceError rather than an anonymous fallback.
    """
    try:
        session = boto3.session.Session(
            aws_access_key_id=settings.access_key,
            aws_secret_access_key=settings.secret_key,
            aws_session_token=settings.session_token,
            region_name=location.region,
            profile_name=settings.profile,
        )
        credentials = session.get_credentials()
    except BotoCoreError as exc:
        raise SourceError(str(location), str(exc)) from exc
    if credentials is None:
        raise SourceError(str(location), "no AWS credentials found")
    return session.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        config=Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"total_max_attempts": 1},
        ),
    )


class S3RangeSource(RangeSource):
    backend = "s3"
    is_remote = True

    def __init__(self, location: ObjectStoreUrl, settings, timeout, client=None):
        super().__init__(location)
        self.bucket = location.bucket
        self.key = location.key
        self.timeout = timeout
        self._client = client or create_s3_client(location, settings, timeout)

    def _transient(self, exc, offset, length):
        return TransientIOError(
            str(self.location), self.backend, f"{type(exc).__name__}: {exc}", offset, length
        )

    def _get_object(self, range_value, offset=None, length=None):
        deadline = time.monotonic() + self.timeout
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self.key, Range=range_value)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            if offset is None and error.get("Code") == "InvalidRange":
                # A suffix range is only unsatisfiable on an empty object.
                return None, b""
            raise SourceError(
                str(self.location), f"{error.get('Code', 'ClientError')}: {error.get('Message', exc)}"
            ) from exc
        except (BotoConnectionError, HTTPClientError) as exc:
            raise self._transient(exc, offset, length) from exc
        except BotoCoreError as exc:
            raise SourceError(str(self.location), str(exc)) from exc

        body = response["Body"]
        chunks = []
        try:
            for chunk in iter(lambda: body.read(READ_CHUNK_SIZE), b""):
                if time.monotonic() > deadline:
                    raise TransientIOError(
                        str(self.location), self.backend,
                        f"range read took longer than {self.timeout}s", offset, length,
                    )
                chunks.append(chunk)
        except (BotoConnectionError, HTTPClientError) as exc:
            raise self._transient(exc, offset, length) from exc
        finally:
            body.close()
        return response, b"".join(chunks)

    def _fetch_length(self):
        response, data = self._get_object(f"bytes=-{TAIL_PROBE_SIZE}")
        if response is None:
            self._record(0)
            return 0
        content_range = parse_content_range(response.get("ContentRange"))
        if content_range is None or content_range[0] is None:
            raise SourceError(str(self.location), "response has no usable ContentRange")
        start, _, total = content_range
        self._record(len(data))
        self._keep_tail(start, data)
        return total

    def _fetch(self, offset, length):
        _, data = self._get_object(_range_header(offset, length), offset, length)
        return data


def open_source(location, config):
    """Construct the RangeSource variant matching ``location``."""
    if isinstance(location, LocalPath):
        return LocalFileSource(location)
    if isinstance(location, HttpUrl):
        return HttpRangeSource(location, timeout=config.timeout)
    if isinstance(location, ObjectStoreUrl):
        return S3RangeSource(location, config.s3, timeout=config.timeout)
    raise TypeError(f"unsupported location: {location!r}")
