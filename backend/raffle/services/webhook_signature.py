"""
MercadoPago webhook signature check.

The provider signs `id:{data.id};request-id:{x-request-id};ts:{ts};` with
the application's webhook secret and sends `x-signature: ts=...,v1=<hex>`.
"""

import hashlib
import hmac
from typing import Mapping, Optional


def _signature_parts(header: str) -> dict[str, str]:
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    manifest = ""
    if data_id:
        # Alphanumeric ids are signed lowercased
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def sign(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


def verify_signature(
    headers: Mapping[str, str],
    data_id: Optional[str],
    secret: str,
) -> bool:
    header = headers.get("x-signature")
    if not header:
        return False
    parts = _signature_parts(header)
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        return False
    expected = sign(secret, build_manifest(data_id, headers.get("x-request-id"), ts))
    return hmac.compare_digest(expected, received)
