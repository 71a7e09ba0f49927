"""TwiML builders for the voice and SMS webhooks."""

from __future__ import annotations

import re

from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import Gather, VoiceResponse

FALLBACK_PROMPT = "Sorry, I didn't catch that."
MAX_SAY_CHARS = 800
VOICE = "alice"


def safe_text(text: str | None) -> str:
    """Collapse whitespace and cap length; Twilio rejects an empty <Say>."""
    if not text:
        return FALLBACK_PROMPT
    cleaned = re.sub(r"\s+", " ", str(text)).strip()[:MAX_SAY_CHARS]
    return cleaned or FALLBACK_PROMPT


def gather_speech(prompt: str, action: str = "/twilio/voice") -> str:
    """Speak ``prompt`` and listen for the caller's answer.

    ``actionOnEmptyResult`` makes Twilio post back even when nothing was
    said, so silence reaches the session as an empty turn.
    """
    response = VoiceResponse()
    gather = Gather(
        input="speech",
        action=action,
        method="POST",
        speech_timeout="auto",
        timeout=6,
        enhanced=True,
        action_on_empty_result=True,
    )
    gather.say(safe_text(prompt), voice=VOICE)
    response.append(gather)
    response.pause(length=1)
    return str(response)


def say_and_hangup(text: str) -> str:
    response = VoiceResponse()
    response.say(safe_text(text), voice=VOICE)
    response.hangup()
    return str(response)


def sms_reply(text: str | None) -> str:
    response = MessagingResponse()
    if text:
        response.message(text)
    return str(response)
