"""AWS Signature Version 4 request signing.

Implements the header-based variant of SigV4 used by the Product Advertising
API. Only the pieces PA-API needs are supported: a single request with an
in-memory body, signed via the ``Authorization`` header.

See https://docs.aws.amazon.com/IAM/latest/UserGuide/create-signed-request.html
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Callable, Mapping, Protocol
from urllib.parse import parse_qsl, quote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"

Clock = Callable[[], datetime]


class RequestSigner(Protocol):
    """Anything able to turn request parts into signed headers."""

    def sign(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes
    ) -> dict[str, str]: ...


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """Derive the per-day, per-region, per-service signing key."""
    k_date = _hmac(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "aws4_request")


def _canonical_uri(path: str) -> str:
    return quote(path or "/", safe="/-_.~")


def _canonical_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    encoded = sorted(
        (quote(k, safe="-_.~"), quote(v, safe="-_.~")) for k, v in pairs
    )
    return "&".join(f"{k}={v}" for k, v in encoded)


def _normalize_header_value(value: str) -> str:
    return " ".join(value.strip().split())


class AwsV4Signer:
    """Signs requests for a single AWS service and region."""

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str,
        service: str,
        clock: Clock | None = None,
    ):
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def credential_scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.region}/{self.service}/aws4_request"

    def canonical_request(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes
    ) -> tuple[str, str]:
        """Return ``(canonical_request, signed_headers)``."""
        parts = urlsplit(url)
        lowered = {name.lower(): _normalize_header_value(value) for name, value in headers.items()}
        names = sorted(lowered)
        canonical_headers = "".join(f"{name}:{lowered[name]}\n" for name in names)
        signed_headers = ";".join(names)
        payload_hash = hashlib.sha256(body).hexdigest()

        request = "\n".join(
            [
                method.upper(),
                _canonical_uri(parts.path),
                _canonical_query(parts.query),
                canonical_headers,
                signed_headers,
                payload_hash,
            ]
        )
        return request, signed_headers

    def sign(
        self, method: str, url: str, headers: Mapping[str, str], body: bytes = b""
    ) -> dict[str, str]:
        """Return ``headers`` plus ``host``, ``x-amz-date`` and ``Authorization``."""
        now = self._clock().astimezone(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = now.strftime("%Y%m%d")

        signed = {name.lower(): value for name, value in headers.items()}
        signed.setdefault("host", urlsplit(url).netloc)
        signed["x-amz-date"] = amz_date

        canonical, signed_headers = self.canonical_request(method, url, signed, body)
        scope = self.credential_scope(date_stamp)
        string_to_sign = "\n".join(
            [
                ALGORITHM,
                amz_date,
                scope,
                hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
            ]
        )
        key = signing_key(self.secret_key, date_stamp, self.region, self.service)
        signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        signed["authorization"] = (
            f"{ALGORITHM} Credential={self.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return signed
