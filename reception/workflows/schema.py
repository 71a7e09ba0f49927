"""Pydantic models for the intake dialogue workflow.

A workflow is a set of named states. Each state carries the prompt spoken
on entry, the validation rules for the caller's answer, and a transitions
table mapping an outcome ("yes", "alternatives", an intent name, or the
``*`` wildcard) to a target.

Target forms::

    "address"                      -> enter state, speak its prompt
    "time:No worries, what time?"  -> enter state, speak the override
    "exit:booked"                  -> finish with the named terminal message
"""

from __future__ import annotations

from pydantic import BaseModel


class IntakeStateDef(BaseModel):
    """One state in the intake workflow."""

    id: str
    prompt: str = ""                           # Spoken on entry, {{placeholders}} filled
    prompt_variants: dict[str, str] = {}       # "duplicate" or intent name -> prompt
    transitions: dict[str, str] = {}           # outcome -> target
    one_word_answers: list[str] = []           # Filler words that are real answers here
    skip_filler_check: bool = False            # Any single word is a real answer here
    check_confidence: bool = True              # Reject short low-confidence transcripts
    reject_counter: str | None = None          # Field in RejectCounts bumped on reject


class IntakeWorkflowDef(BaseModel):
    """A complete intake workflow definition."""

    id: str
    version: str = "1"
    initial_state: str = ""
    greeting: str = ""
    reject_prefix: str = "Sorry, I didn't get that."
    silence_prefix: str = "Sorry, say that again, please."
    exit_message: str = "Thanks for calling. Goodbye."
    terminal_messages: dict[str, str] = {}
    states: dict[str, IntakeStateDef] = {}
