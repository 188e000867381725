from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from .config import Credentials
from .errors import SigningFailure
from .models import ActionRequest


ALGORITHM = "TC3-HMAC-SHA256"
SIGNED_HEADERS = "content-type;host"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True, slots=True)
class SignedEnvelope:
    timestamp: int
    date: str
    canonical_request: str
    string_to_sign: str
    signature: str
    authorization: str
    body: bytes = b""
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def serialize_body(parameters: dict[str, Any]) -> bytes:
    return json.dumps(parameters, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_query(parameters: dict[str, Any]) -> str:
    pairs = []
    for key in sorted(parameters):
        value = parameters[key]
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif value is None:
            value = ""
        elif isinstance(value, (dict, list)):
            value = json.dumps(value, sort_keys=True, separators=(",", ":"))
        pairs.append(f"{quote(str(key), safe='')}={quote(str(value), safe='')}")
    return "&".join(pairs)


def derive_signing_key(secret_key: str, date: str, service: str) -> bytes:
    secret_date = _hmac_sha256(("TC3" + secret_key).encode("utf-8"), date)
    secret_service = _hmac_sha256(secret_date, service)
    return _hmac_sha256(secret_service, "tc3_request")


def sign_request(
    request: ActionRequest,
    credentials: Credentials,
    host: str,
    timestamp: int,
) -> SignedEnvelope:
    if not credentials.secret_id or not credentials.secret_key:
        raise SigningFailure("Cannot sign request: secretId and secretKey are required")

    if request.method == "GET":
        content_type = FORM_CONTENT_TYPE
        query = canonical_query(request.parameters)
        body = b""
    else:
        content_type = JSON_CONTENT_TYPE
        query = ""
        body = serialize_body(request.parameters)

    canonical_headers = f"content-type:{content_type}\nhost:{host}\n"
    canonical_request = "\n".join(
        [
            request.method,
            "/",
            query,
            canonical_headers,
            SIGNED_HEADERS,
            _sha256_hex(body),
        ]
    )

    date = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
    credential_scope = f"{date}/{request.service}/tc3_request"
    string_to_sign = "\n".join(
        [
            ALGORITHM,
            str(timestamp),
            credential_scope,
            _sha256_hex(canonical_request.encode("utf-8")),
        ]
    )

    signing_key = derive_signing_key(credentials.secret_key, date, request.service)
    signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
    authorization = (
        f"{ALGORITHM} Credential={credentials.secret_id}/{credential_scope}, "
        f"SignedHeaders={SIGNED_HEADERS}, Signature={signature}"
    )

    headers = {
        "Authorization": authorization,
        "Content-Type": content_type,
        "Host": host,
        "X-TC-Action": request.action,
        "X-TC-Version": request.version,
        "X-TC-Timestamp": str(timestamp),
    }
    if credentials.token:
        headers["X-TC-Token"] = credentials.token

    return SignedEnvelope(
        timestamp=timestamp,
        date=date,
        canonical_request=canonical_request,
        string_to_sign=string_to_sign,
        signature=signature,
        authorization=authorization,
        body=body,
        query=query,
        headers=headers,
    )
