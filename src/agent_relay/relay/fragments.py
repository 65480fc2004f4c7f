"""
Classification of agent response fragments.

A single turn can come back as several activities. :func:`classify_fragments`
folds them into a :class:`Classification`: the concatenated reply text plus at
most one consent card and one sign-in card. When several cards of the same kind
arrive in one turn the first is kept and the rest are logged and dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable

from .agent import Fragment
from .errors import MalformedSignInCard

logger = logging.getLogger(__name__)

CONSENT_CARD_NAME = "connectors/consentCard"
OAUTH_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.oauth"
SIGN_IN_BUTTON_TYPE = "signin"

DEFAULT_SIGN_IN_PROMPT = "Please sign in to continue."
SIGN_IN_NOT_FOUND = "I need you to sign in, but I could not find the sign-in link. Please try again."
SIGN_IN_LINK_MISSING = "I need you to sign in, but the link is missing. Please contact support."


@dataclass
class Classification:
    text: str = ""
    consent_card: Fragment | None = None
    sign_in_card: Fragment | None = None


def is_consent_card(fragment: Fragment) -> bool:
    return fragment.get("name") == CONSENT_CARD_NAME


def is_sign_in_card(fragment: Fragment) -> bool:
    attachments = fragment.get("attachments") or []
    return any(
        isinstance(att, dict) and att.get("contentType") == OAUTH_CARD_CONTENT_TYPE
        for att in attachments
    )


def classify_fragments(fragments: Iterable[Fragment]) -> Classification:
    """Sort fragments into reply text, consent card and sign-in card."""

    result = Classification()
    parts: list[str] = []

    for index, fragment in enumerate(fragments):
        kind = fragment.get("type")
        text = fragment.get("text")

        if kind == "message" and text:
            parts.append(text)
        elif is_consent_card(fragment):
            if result.consent_card is None:
                result.consent_card = fragment
                logger.info("Consent card detected (fragment %d)", index)
            else:
                logger.warning("Ignoring additional consent card (fragment %d)", index)
        elif kind == "message" and is_sign_in_card(fragment):
            if result.sign_in_card is None:
                result.sign_in_card = fragment
                logger.info("Sign-in card detected (fragment %d)", index)
            else:
                logger.warning("Ignoring additional sign-in card (fragment %d)", index)
        else:
            logger.debug("Ignoring fragment %d (type=%s, name=%s)", index, kind, fragment.get("name"))

    result.text = " ".join(parts).strip()
    return result


def consent_approval_payload() -> str:
    """Serialized "Allow" submission answering a consent card."""

    payload = {
        "type": "message",
        "channelData": {
            "postBack": True,
            "enableDiagnostics": True,
        },
        "value": {
            "action": "Allow",
            "id": "submit",
            "shouldAwaitUserInput": True,
        },
    }
    return json.dumps(payload)


def _parse_sign_in(card: Fragment) -> tuple[str, str]:
    try:
        content = card["attachments"][0]["content"]
        button = next(
            b for b in content.get("buttons") or [] if b.get("type") == SIGN_IN_BUTTON_TYPE
        )
        link = button["value"]
    except (KeyError, IndexError, TypeError, AttributeError, StopIteration) as exc:
        raise MalformedSignInCard("Sign-in card has no usable sign-in button") from exc

    if not link:
        raise MalformedSignInCard("Sign-in button has an empty link")
    return content.get("text") or DEFAULT_SIGN_IN_PROMPT, link


def render_sign_in(card: Fragment) -> str:
    """Turn a sign-in card into a prompt with a clickable link."""

    attachments = card.get("attachments") or []
    first = attachments[0] if attachments else None
    if not isinstance(first, dict) or first.get("contentType") != OAUTH_CARD_CONTENT_TYPE:
        logger.error("Sign-in card has no OAuth attachment")
        return SIGN_IN_NOT_FOUND

    try:
        prompt, link = _parse_sign_in(card)
    except MalformedSignInCard as exc:
        logger.error("Could not extract sign-in link: %s", exc)
        return SIGN_IN_LINK_MISSING

    return f"{prompt}\n\nClick here to sign in: {link}"


__all__ = [
    "Classification",
    "classify_fragments",
    "consent_approval_payload",
    "render_sign_in",
    "is_consent_card",
    "is_sign_in_card",
    "CONSENT_CARD_NAME",
    "OAUTH_CARD_CONTENT_TYPE",
    "SIGN_IN_NOT_FOUND",
    "SIGN_IN_LINK_MISSING",
    "DEFAULT_SIGN_IN_PROMPT",
]
