"""
Direct message payloads as carried by the transport and message store.

The transport must keep these fields verbatim:
    text, encryptedData, iv, authTag, isEncrypted, senderId, receiverId

The shared key is always derived with the *counterparty's* id: a message we
sent is decrypted with the receiver's id, one we received with the sender's.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from e2ee.codec import EncryptedEnvelope
from e2ee.engine import DECRYPTION_FAILED_TEXT, CryptoEngine
from e2ee.errors import MalformedEnvelopeError

logger = logging.getLogger(__name__)

ENCRYPTED_MARKER_TEXT = "[Encrypted]"
MISSING_PARTICIPANT_TEXT = "[Cannot decrypt: missing participant id]"


class MessagePayload(BaseModel):
    """One message as stored and relayed"""
    text: str = ""
    encryptedData: str = ""
    iv: str = ""
    authTag: str = ""
    isEncrypted: bool = False
    senderId: Optional[str] = None
    receiverId: Optional[str] = None

    def envelope(self) -> EncryptedEnvelope:
        """Decode the encrypted fields; raises MalformedEnvelopeError"""
        if not self.isEncrypted:
            raise MalformedEnvelopeError("Message is not encrypted")
        return EncryptedEnvelope.from_dict({
            'ciphertext': self.encryptedData,
            'iv': self.iv,
            'authTag': self.authTag
        })


def counterparty_id(payload: MessagePayload, local_id: str) -> Optional[str]:
    """
    Id to derive the shared key with.

    Returns:
        receiverId for messages we sent, senderId otherwise; None if unknown
    """
    if payload.senderId == local_id:
        return payload.receiverId or None
    return payload.senderId or None


async def seal_message(engine: CryptoEngine, text: str, sender_id: str, receiver_id: str) -> MessagePayload:
    """
    Encrypt `text` for `receiver_id` and build the payload.

    There is no plaintext fallback: if encryption fails the error propagates
    and nothing is sent.
    """
    envelope = await engine.encrypt_for_peer(text, receiver_id)
    wire = envelope.to_dict()
    return MessagePayload(
        text=ENCRYPTED_MARKER_TEXT,
        encryptedData=wire['ciphertext'],
        iv=wire['iv'],
        authTag=wire['authTag'],
        isEncrypted=True,
        senderId=sender_id,
        receiverId=receiver_id
    )


async def open_message(engine: CryptoEngine, payload: MessagePayload, local_id: str) -> str:
    """
    Text to display for a stored or received message. Never raises.
    """
    if not payload.isEncrypted:
        return payload.text

    peer_id = counterparty_id(payload, local_id)
    if peer_id is None:
        logger.warning("Cannot decrypt message: missing participant id")
        return MISSING_PARTICIPANT_TEXT

    try:
        envelope = payload.envelope()
    except MalformedEnvelopeError:
        logger.warning("Stored message has malformed encrypted fields")
        return DECRYPTION_FAILED_TEXT

    return await engine.decrypt_from_peer(envelope, peer_id)
