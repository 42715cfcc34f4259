"""
Webhook authenticator (Standard Webhooks scheme, as sent by Polar).

Signed content is "{webhook-id}.{webhook-timestamp}.{raw body}", HMAC-SHA256
keyed by the UTF-8 bytes of the shared secret, sent as "v1,<base64>" in the
webhook-signature header (space separated when the secret is rotating).

The signature is always checked over the exact bytes received. The body is
only parsed once it has been verified.
"""
import base64
import hashlib
import hmac
import logging
import time
from typing import Callable, Mapping, Optional

from relay.features.billing.errors import (
    EventStale,
    SignatureInvalid,
    WebhookSecretMissing,
)
from relay.features.billing.events import WebhookEvent, parse_event

logger = logging.getLogger("relay")

WEBHOOK_ID_HEADER = "webhook-id"
WEBHOOK_TIMESTAMP_HEADER = "webhook-timestamp"
WEBHOOK_SIGNATURE_HEADER = "webhook-signature"

DEFAULT_TOLERANCE_SECONDS = 300


def extract_webhook_headers(headers: Mapping[str, str]) -> dict:
    """Pick the three signature headers out of a (case-insensitive or plain) mapping."""
    lowered = {str(k).lower(): v for k, v in headers.items()}
    return {
        WEBHOOK_ID_HEADER: lowered.get(WEBHOOK_ID_HEADER, "") or "",
        WEBHOOK_TIMESTAMP_HEADER: lowered.get(WEBHOOK_TIMESTAMP_HEADER, "") or "",
        WEBHOOK_SIGNATURE_HEADER: lowered.get(WEBHOOK_SIGNATURE_HEADER, "") or "",
    }


class EventAuthenticator:
    """Verifies webhook deliveries and returns typed events."""

    def __init__(
        self,
        secret: Optional[str],
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret or ""
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock
        # Polar secrets are plain text, so the key is the raw UTF-8 bytes
        self._key: Optional[bytes] = self._secret.encode("utf-8") if self._secret else None

    @property
    def configured(self) -> bool:
        return self._key is not None

    def _expected_signature(self, webhook_id: str, timestamp: int, body: bytes) -> bytes:
        # Signed over the raw bytes; the body is only decoded once authentic
        signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
        digest = hmac.new(self._key, signed_content, hashlib.sha256).digest()
        return base64.b64encode(digest)

    def _check_timestamp(self, raw_timestamp: str) -> int:
        try:
            timestamp = int(raw_timestamp)
        except (TypeError, ValueError):
            raise SignatureInvalid("Invalid webhook-timestamp header")

        now = int(self._clock())
        if abs(now - timestamp) > self.tolerance_seconds:
            raise EventStale(f"Webhook timestamp outside {self.tolerance_seconds}s window")
        return timestamp

    def verify(self, body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """
        Authenticate a delivery and parse it.

        Args:
            body: Raw request body, exactly as received
            headers: Request headers (must include the three webhook-* headers)

        Returns:
            Parsed WebhookEvent

        Raises:
            WebhookSecretMissing: No shared secret configured
            SignatureInvalid: Missing headers or no matching signature
            EventStale: Timestamp outside the freshness window
            MalformedEvent: Verified body could not be parsed
        """
        if self._key is None:
            raise WebhookSecretMissing("Webhook secret is not configured")

        values = extract_webhook_headers(headers)
        webhook_id = values[WEBHOOK_ID_HEADER]
        raw_timestamp = values[WEBHOOK_TIMESTAMP_HEADER]
        signature_header = values[WEBHOOK_SIGNATURE_HEADER]
        if not (webhook_id and raw_timestamp and signature_header):
            raise SignatureInvalid("Missing webhook signature headers")

        timestamp = self._check_timestamp(raw_timestamp)
        expected = self._expected_signature(webhook_id, timestamp, body)

        matched = False
        for versioned in signature_header.split(" "):
            version, _, provided = versioned.partition(",")
            if version != "v1" or not provided:
                continue
            if hmac.compare_digest(expected, provided.encode("ascii", errors="replace")):
                matched = True
                break
        if not matched:
            raise SignatureInvalid("No matching webhook signature")

        event = parse_event(body, webhook_id=webhook_id)
        logger.info(
            "webhook.verified",
            extra={"webhook_id": webhook_id, "event_type": event.type},
        )
        return event
