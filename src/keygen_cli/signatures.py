"""
Verification of signed Keygen API responses.

Keygen signs every response with the account's Ed25519 key. The signature
covers the request target, host, date and a SHA-256 digest of the body:

    (request-target): get /v1/accounts/<id>/licenses
    host: api.keygen.sh
    date: Wed, 09 Jun 2021 16:08:15 GMT
    digest: sha-256=<base64 body digest>

Public API surface:
- parse_signature_header(value: str) -> dict[str, str]
- signing_string(method, uri, host, date, digest) -> str
- verify_response(res, public_key_hex, *, method, uri, host) -> None
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from urllib.parse import quote

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .errors import SignatureError

__all__ = [
    "body_digest",
    "parse_signature_header",
    "signing_string",
    "verify_response",
]


def parse_signature_header(value: str) -> dict[str, str]:
    params: dict[str, str] = {}
    for part in re.split(r"\s*,\s*", value or ""):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        params[k.strip()] = v.strip().strip('"')
    return params


def body_digest(body: bytes) -> str:
    return "sha-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode()


def signing_string(method: str, uri: str, host: str, date: str, digest: str) -> str:
    return "".join(
        [
            f"(request-target): {method.lower()} {quote(uri, safe='/?=&')}\n",
            f"host: {host}\n",
            f"date: {date}\n",
            f"digest: {digest}",
        ]
    )


def verify_response(res, public_key_hex: str, *, method: str, uri: str, host: str) -> None:
    """
    Check the Digest and Keygen-Signature headers of a requests.Response-like object.

    Raises SignatureError on a missing header, digest mismatch, unsupported
    algorithm, malformed key or bad signature.
    """
    header = res.headers.get("Keygen-Signature")
    if not header:
        raise SignatureError("response signature is missing")

    params = parse_signature_header(header)
    if params.get("algorithm") != "ed25519":
        raise SignatureError(f"unsupported signature algorithm: {params.get('algorithm')!r}")
    sig_b64 = params.get("signature")
    if not sig_b64:
        raise SignatureError("signature parameter missing")

    digest = body_digest(res.content or b"")
    if digest != res.headers.get("Digest"):
        raise SignatureError("response digest did not match")

    date = res.headers.get("Date")
    if not date:
        raise SignatureError("Date header missing")

    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        signature = base64.b64decode(sig_b64)
    except (ValueError, binascii.Error) as exc:
        raise SignatureError(f"invalid public key or signature encoding: {exc}") from exc

    message = signing_string(method, uri, host, date, digest).encode()
    try:
        key.verify(signature, message)
    except InvalidSignature as exc:
        raise SignatureError("response signature verification failed") from exc
