"""Conversation text helpers: split a pasted chat into attributed messages.

Recognises the common export formats:
    Alex: hey
    [10:42] Alex: hey
    [12/03/2024, 10:42:11] Alex: hey
    12/03/2024, 10:42 - Alex: hey          (WhatsApp)

Lines without a known "Label:" prefix are treated as a continuation of the
previous message (or as unattributed text if there is none yet).
"""
from __future__ import annotations

import re
from dataclasses import dataclass

_BRACKET_PREFIX = re.compile(r"^\s*\[[^\]]*\]\s*")
_WHATSAPP_PREFIX = re.compile(
    r"^\s*\d{1,2}/\d{1,2}/\d{2,4},?\s+\d{1,2}:\d{2}(?::\d{2})?(?:\s?[APap]\.?[Mm]\.?)?\s+-\s+"
)
_WORD = re.compile(r"[a-z']+")


@dataclass
class Message:
    speaker: str | None  # None when the line can't be attributed
    text: str
    line_no: int


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens (letters and apostrophes)."""
    return _WORD.findall(text.lower())


def _strip_prefix(line: str) -> str:
    line = _BRACKET_PREFIX.sub("", line, count=1)
    return _WHATSAPP_PREFIX.sub("", line, count=1)


def split_messages(text: str, participants: list[str]) -> list[Message]:
    """Split conversation text into messages attributed to known participants."""
    # Longest label first so "Sam" doesn't steal "Samantha:" lines
    labels = sorted(participants, key=len, reverse=True)
    messages: list[Message] = []
    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = _strip_prefix(raw).strip()
        if not line:
            continue
        speaker = None
        for label in labels:
            prefix = f"{label}:"
            if line[: len(prefix)].lower() == prefix.lower():
                speaker = label
                line = line[len(prefix):].strip()
                break
        if speaker is None and messages:
            messages[-1].text = f"{messages[-1].text}\n{line}"
            continue
        messages.append(Message(speaker=speaker, text=line, line_no=line_no))
    return messages


def messages_by_speaker(messages: list[Message], participants: list[str]) -> dict[str, list[Message]]:
    grouped: dict[str, list[Message]] = {p: [] for p in participants}
    for msg in messages:
        if msg.speaker in grouped:
            grouped[msg.speaker].append(msg)
    return grouped
