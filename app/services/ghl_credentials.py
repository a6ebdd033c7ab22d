"""
GHL credential inspection.
Reads scope hints out of a JWT-shaped token without verifying its signature;
GHL itself rejects bad tokens with a 401.
"""

import binascii
import json
import logging
from typing import Optional

import jwt
from jwt.utils import base64url_decode

from app.models.schemas import CredentialHints

logger = logging.getLogger(__name__)


def is_jwt_shaped(credential: Optional[str]) -> bool:
    return bool(credential) and len(credential.split(".")) == 3


def build_auth_header(credential: str) -> str:
    """Bearer for JWT-shaped tokens, the raw string for legacy API keys"""
    if is_jwt_shaped(credential):
        return f"Bearer {credential}"
    return credential


def mask_credential(credential: Optional[str]) -> str:
    return f"{credential[:15]}..." if credential else "null"


def _claim(payload: dict, name: str) -> Optional[str]:
    value = payload.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _decode_payload_segment(segment: str) -> Optional[dict]:
    try:
        payload = json.loads(base64url_decode(segment))
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Could not decode credential payload: {e}")
        return None
    if not isinstance(payload, dict):
        logger.warning("Credential payload is not a JSON object")
        return None
    return payload


def inspect_credential(credential: Optional[str]) -> CredentialHints:
    """Extract location_id / company_id / sub from the token payload. Never raises."""
    if not is_jwt_shaped(credential):
        logger.info("Credential is not JWT-shaped - no scope hints available")
        return CredentialHints(valid=False)

    try:
        payload = jwt.decode(credential, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        # Only the payload segment matters for scope hints
        logger.info(f"Full token decode failed ({e}), decoding the payload segment alone")
        payload = _decode_payload_segment(credential.split(".")[1])
        if payload is None:
            return CredentialHints(valid=False)

    hints = CredentialHints(
        location_id=_claim(payload, "location_id"),
        company_id=_claim(payload, "company_id"),
        subject_id=_claim(payload, "sub"),
    )
    hints.valid = bool(hints.location_id or hints.company_id)
    logger.info(
        f"Credential hints: location_id={hints.location_id} company_id={hints.company_id} "
        f"sub={hints.subject_id} valid={hints.valid}"
    )
    return hints
