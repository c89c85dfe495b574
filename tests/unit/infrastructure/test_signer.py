"""Unit tests for SigV4 signing, checked against the AWS test suite."""

from datetime import datetime, timezone

from product_refresh.infrastructure.paapi.signer import AwsV4Signer, signing_key

SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"


def test_signing_key_derivation() -> None:
    key = signing_key(SECRET, "20120215", "us-east-1", "iam")

    assert key.hex() == "f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d"


def test_get_vanilla() -> None:
    signer = AwsV4Signer(
        "AKIDEXAMPLE",
        SECRET,
        "us-east-1",
        "service",
        clock=lambda: datetime(2015, 8, 30, 12, 36, tzinfo=timezone.utc),
    )

    headers = signer.sign("GET", "https://example.amazonaws.com/", {"Host": "example.amazonaws.com"})

    assert headers["x-amz-date"] == "20150830T123600Z"
    assert headers["authorization"] == (
        "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20150830/us-east-1/service/aws4_request, "
        "SignedHeaders=host;x-amz-date, "
        "Signature=5fa00fa31553b73ebf1942676e86291e8372ff2a2260956d9b8aae1d763fbf31"
    )


def test_canonical_request_sorts_headers_and_query() -> None:
    signer = AwsV4Signer("AKIDEXAMPLE", SECRET, "us-east-1", "service")

    canonical, signed_headers = signer.canonical_request(
        "get",
        "https://example.amazonaws.com/?Param2=value2&Param1=value1",
        {"X-Amz-Date": "20150830T123600Z", "Host": "example.amazonaws.com"},
        b"",
    )

    lines = canonical.split("\n")
    assert lines[0] == "GET"
    assert lines[1] == "/"
    assert lines[2] == "Param1=value1&Param2=value2"
    assert signed_headers == "host;x-amz-date"
    # sha256 of the empty body
    assert lines[-1] == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_sign_adds_host_from_url() -> None:
    signer = AwsV4Signer("AKIDEXAMPLE", SECRET, "eu-west-1", "ProductAdvertisingAPI")

    headers = signer.sign("POST", "https://webservices.amazon.de/paapi5/getitems", {}, b"{}")

    assert headers["host"] == "webservices.amazon.de"
    assert "/eu-west-1/ProductAdvertisingAPI/aws4_request" in headers["authorization"]
