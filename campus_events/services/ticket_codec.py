"""
Ticket codec for Campus Events Service.
Encrypts ticket identity into a QR envelope and reads it back at the door.

Envelope: {"data": "<hex ciphertext>", "iv": "<hex 16-byte iv>"}
Plaintext: {"ticketId", "userId", "eventId", "eventName", "userName", "registrationDate"}
Cipher: AES-256-CBC with PKCS7 padding, fresh random IV per ticket.
"""

import io
import json
import os
import logging
from datetime import datetime
from typing import Optional, NamedTuple, Dict, Any, Tuple

import qrcode
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from campus_events.core.config import config
from campus_events.core.exceptions import CryptoError, InvalidEnvelopeError, DecryptionFailureError
from campus_events.core.time_utils import isoformat

logger = logging.getLogger(__name__)

IV_LENGTH = 16
KEY_LENGTH = 32


class IssuedTicket(NamedTuple):
    """Output of issuing a ticket."""
    qr_image: bytes
    encrypted_payload: str
    iv: str


class TicketReference(NamedTuple):
    """A ticket id resolved from scanner input, and the tier that produced it."""
    ticket_id: str
    source: str  # "encrypted" | "legacy_json" | "raw"
    payload: Optional[Dict[str, Any]] = None


class TicketCodec:
    """
    Produces and consumes tamper-resistant ticket identities.
    """

    def __init__(self, key_hex: Optional[str], box_size: int = 10, border: int = 2):
        self._key = self._parse_key(key_hex) if key_hex else None
        self.box_size = box_size
        self.border = border

    @staticmethod
    def _parse_key(key_hex: str) -> bytes:
        try:
            key = bytes.fromhex(key_hex)
        except ValueError:
            raise CryptoError("QR encryption key must be hex encoded")
        if len(key) != KEY_LENGTH:
            raise CryptoError(f"QR encryption key must be {KEY_LENGTH} bytes")
        return key

    @property
    def key(self) -> bytes:
        if self._key is None:
            raise CryptoError("QR encryption key is not configured")
        return self._key

    # Cipher
    def encrypt(self, plaintext: str) -> Tuple[str, str]:
        """Encrypt plaintext with a fresh IV. Returns (hex ciphertext, hex iv)."""
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return ciphertext.hex(), iv.hex()

    def decrypt(self, ciphertext_hex: str, iv_hex: str) -> str:
        """Decrypt hex ciphertext. Raises DecryptionFailureError on any failure."""
        try:
            ciphertext = bytes.fromhex(ciphertext_hex)
            iv = bytes.fromhex(iv_hex)
            if len(iv) != IV_LENGTH:
                raise ValueError("invalid IV length")

            decryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, TypeError, UnicodeDecodeError) as e:
            raise DecryptionFailureError("Failed to decrypt QR code", {"reason": str(e)})

    # Envelope
    @staticmethod
    def envelope(encrypted_payload: str, iv: str) -> str:
        """Build the QR-encodable envelope."""
        return json.dumps({"data": encrypted_payload, "iv": iv})

    def issue(self, ticket_id: str, user_id: int, event_id: int, event_name: str,
              user_name: Optional[str], registration_date: Optional[datetime]) -> IssuedTicket:
        """
        Encrypt the ticket identity and rasterize its envelope.

        Returns:
            IssuedTicket with PNG bytes and the (ciphertext, iv) pair to persist
        """
        plaintext = json.dumps({
            "ticketId": ticket_id,
            "userId": user_id,
            "eventId": event_id,
            "eventName": event_name,
            "userName": user_name,
            "registrationDate": isoformat(registration_date),
        })
        encrypted_payload, iv = self.encrypt(plaintext)
        image = self.render(self.envelope(encrypted_payload, iv))
        return IssuedTicket(image, encrypted_payload, iv)

    def decode(self, envelope: str) -> Dict[str, Any]:
        """
        Parse an envelope and decrypt it back into the plaintext record.

        Raises:
            InvalidEnvelopeError: envelope is not a {data, iv} JSON object
            DecryptionFailureError: wrong key, corrupted data or unparsable plaintext
        """
        try:
            parsed = json.loads(envelope)
        except (TypeError, ValueError):
            raise InvalidEnvelopeError("Invalid QR code format")

        if not isinstance(parsed, dict) or not parsed.get("data") or not parsed.get("iv"):
            raise InvalidEnvelopeError("Invalid QR code data")

        plaintext = self.decrypt(str(parsed["data"]), str(parsed["iv"]))
        try:
            record = json.loads(plaintext)
        except ValueError:
            raise DecryptionFailureError("Decrypted QR payload is not valid JSON")
        if not isinstance(record, dict) or not record.get("ticketId"):
            raise DecryptionFailureError("Decrypted QR payload has no ticket id")
        return record

    def resolve_ticket_id(self, identifier: str) -> TicketReference:
        """
        Resolve scanner input into a ticket id.
        Tiers, in order: encrypted envelope, legacy {"ticketId"} JSON, raw ticket id string.
        """
        if identifier is None or not str(identifier).strip():
            raise InvalidEnvelopeError("Ticket ID is required")
        identifier = str(identifier).strip()

        try:
            parsed = json.loads(identifier)
        except ValueError:
            parsed = None

        if not isinstance(parsed, dict):
            # Plain strings (and bare JSON scalars) are ticket ids
            return TicketReference(identifier, "raw")

        crypto_error = None
        if parsed.get("data") and parsed.get("iv"):
            try:
                record = self.decode(identifier)
                return TicketReference(str(record["ticketId"]), "encrypted", record)
            except CryptoError as e:
                logger.warning(f"Encrypted ticket could not be decoded, trying legacy format: {e.message}")
                crypto_error = e

        legacy_id = parsed.get("ticketId") or parsed.get("ticket_id")
        if legacy_id:
            return TicketReference(str(legacy_id), "legacy_json", parsed)

        if crypto_error is not None:
            raise crypto_error
        raise InvalidEnvelopeError("Invalid QR code data")

    # Rendering
    def render(self, payload: str) -> bytes:
        """Rasterize a payload as a PNG QR code."""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def verify(self, ticket_id: str, encrypted_payload: Optional[str] = None, iv: Optional[str] = None) -> bytes:
        """
        Re-display an issued ticket without re-encrypting it.
        Uses the stored envelope when present, else a bare ticket id record.
        """
        if encrypted_payload and iv:
            return self.render(self.envelope(encrypted_payload, iv))
        return self.render(json.dumps({"ticketId": ticket_id}))


async def build_ticket_codec() -> TicketCodec:
    """Create a codec from the ticket configuration."""
    ticket_config = await config.get_ticket_config()
    if not ticket_config["qr_encryption_key"]:
        logger.warning("QR_ENCRYPTION_KEY not set, ticket issuance will fail")
    return TicketCodec(
        ticket_config["qr_encryption_key"],
        box_size=ticket_config["qr_box_size"],
        border=ticket_config["qr_border"],
    )
