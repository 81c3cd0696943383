"""
Webhook notifier.

POSTs committed ledger events as JSON to a dispatch service (push
notifications, SMS). Bodies are signed with Ed25519 so the receiver can
verify they came from the ledger.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from freightledger.core.exceptions import ValidationError
from freightledger.notifications.dispatcher import Notifier
from freightledger.notifications.events import LedgerEvent
from freightledger.resilience.retry import execute_with_retry

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-freightledger-signature"


class InvalidSignatureError(ValidationError):
    """Raised when webhook signature verification fails."""

    pass


def _decode_key_bytes(key: str) -> bytes:
    """Raw 32-byte key from hex or base64 text."""
    try:
        return bytes.fromhex(key)
    except ValueError:
        pass
    try:
        return base64.b64decode(key, validate=True)
    except ValueError:
        raise ValidationError("Could not parse key (expected PEM, Hex, or Base64)") from None


def load_signing_key(key: str) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from PEM, hex or base64 text."""
    if "-----BEGIN" in key:
        private_key = serialization.load_pem_private_key(key.encode("utf-8"), password=None)
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValidationError("Signing key is not an Ed25519 private key")
        return private_key
    return Ed25519PrivateKey.from_private_bytes(_decode_key_bytes(key))


def load_verification_key(key: str) -> Ed25519PublicKey:
    """Load an Ed25519 public key from PEM, hex or base64 text."""
    if "-----BEGIN PUBLIC KEY-----" in key:
        try:
            public_key = serialization.load_pem_public_key(key.encode("utf-8"))
        except ValueError as e:
            raise InvalidSignatureError(f"Invalid PEM key: {e}") from e
        if not isinstance(public_key, Ed25519PublicKey):
            raise InvalidSignatureError("Key is not an Ed25519PublicKey")
        return public_key
    return Ed25519PublicKey.from_public_bytes(_decode_key_bytes(key))


def sign_payload(private_key: Ed25519PrivateKey, payload: bytes) -> str:
    """Base64 Ed25519 signature of ``payload``."""
    return base64.b64encode(private_key.sign(payload)).decode("ascii")


def verify_webhook_signature(
    verification_key: str,
    payload: str | bytes,
    headers: Mapping[str, str],
) -> bool:
    """
    Verify a webhook body on the receiving side.

    Args:
        verification_key: Ed25519 public key (PEM, hex or base64)
        payload: Raw request body
        headers: Request headers

    Returns:
        True if valid

    Raises:
        InvalidSignatureError: If the header is missing or the signature does not match
    """
    signature = headers.get(SIGNATURE_HEADER)
    if not signature:
        raise InvalidSignatureError(f"Missing {SIGNATURE_HEADER} header")

    payload_bytes = payload.encode("utf-8") if isinstance(payload, str) else payload

    try:
        signature_bytes = base64.b64decode(signature, validate=True)
    except ValueError:
        raise InvalidSignatureError("Invalid base64 signature") from None

    public_key = load_verification_key(verification_key)
    try:
        public_key.verify(signature_bytes, payload_bytes)
    except InvalidSignature:
        raise InvalidSignatureError("Signature mismatch") from None
    return True


class WebhookNotifier(Notifier):
    """
    Delivers events to an HTTP endpoint.

    Transient failures (transport errors, 429/5xx) are retried with backoff;
    the last failure propagates to the dispatcher, which logs it.
    """

    def __init__(
        self,
        url: str,
        signing_key: str | Ed25519PrivateKey | None = None,
        timeout: float = 10.0,
        attempts: int = 5,
        max_wait: float = 16,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize webhook notifier.

        Args:
            url: Endpoint receiving the POSTs
            signing_key: Ed25519 private key (object or PEM/hex/base64 text)
            timeout: HTTP timeout in seconds
            attempts: Delivery attempts per event
            max_wait: Upper bound for one backoff sleep in seconds
            client: Shared httpx client (one is created if omitted)
        """
        self._url = url
        if isinstance(signing_key, str):
            signing_key = load_signing_key(signing_key)
        self._signing_key = signing_key
        self._attempts = attempts
        self._max_wait = max_wait
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _build_request(self, event: LedgerEvent) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(event.to_dict(), separators=(",", ":"), sort_keys=True).encode("utf-8")
        headers = {"content-type": "application/json", "x-freightledger-event": event.type.value}
        if self._signing_key is not None:
            headers[SIGNATURE_HEADER] = sign_payload(self._signing_key, body)
        return body, headers

    async def _post(self, body: bytes, headers: dict[str, str]) -> None:
        response = await self._client.post(self._url, content=body, headers=headers)
        response.raise_for_status()

    async def notify(self, event: LedgerEvent) -> None:
        body, headers = self._build_request(event)
        await execute_with_retry(
            self._post, body, headers, attempts=self._attempts, max_wait=self._max_wait
        )
        logger.debug(f"Delivered event {event.id} to {self._url}")

    async def close(self) -> None:
        await self._client.aclose()
