"""Breathy: the closing-time chat assistant.

Uses the OpenAI chat-completions API when a key is configured and falls back
to the rule-based responder on any failure, so the customer always gets a
reply.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, List, Mapping, Optional, Tuple

from openai import OpenAI, OpenAIError

from bartab.context import SessionContext
from bartab.responder import rule_based_reply

logger = logging.getLogger(__name__)

MAX_TOKENS = 250
TEMPERATURE = 0.8
MAX_HISTORY = 40
MAX_MESSAGE_CHARS = 1000
ROLES = {"user", "assistant"}

FALLBACK_REPLY = (
    "Oops, Breathy glitched for a sec 😅 But real talk, make sure you have a safe ride home "
    "tonight. What else can I help with?"
)

SOURCE_AI = "ai"
SOURCE_RULES = "rules"
SOURCE_CANNED = "canned"


def validate_messages(raw: Any) -> Tuple[Optional[List[dict]], Optional[str]]:
    """Return (messages, error). Messages are trimmed copies safe to forward."""
    if not isinstance(raw, list) or not raw:
        return None, "messages must be a non-empty list"
    if len(raw) > MAX_HISTORY:
        return None, f"messages may contain at most {MAX_HISTORY} entries"
    out = []
    for item in raw:
        if not isinstance(item, dict):
            return None, "each message must be an object"
        role = item.get("role")
        content = item.get("content")
        if role not in ROLES:
            return None, "message role must be user or assistant"
        if not isinstance(content, str) or not content.strip():
            return None, "message content is required"
        out.append({"role": role, "content": content.strip()[:MAX_MESSAGE_CHARS]})
    return out, None


def build_system_prompt(ctx: SessionContext) -> str:
    drink_summary = ", ".join(f"{d.name} ({d.volume_ml:g}ml, {d.abv:g}% ABV)" for d in ctx.drinks)
    if ctx.hours_until_sober > 0:
        sober_by = f"approximately {ctx.hours_until_sober} hours from now"
    else:
        sober_by = "already at or near 0"

    return f"""You are Breathy, a witty and caring AI breathalyzer buddy built into the SOBR bar app. You're chatting with a customer at the end of their drinking session. This is a CONVERSATION: they can ask you questions and you respond naturally.

PERSONALITY:
- Warm but direct, a concerned best friend who's also hilarious
- Casual language, light humor, occasional emoji
- NEVER encourage more drinking
- If they ask "can I drive?" and BAC >= 0.08, be firm: absolutely not
- If they ask "can I drive?" and BAC 0.05-0.08, strongly recommend waiting
- If BAC < 0.05, they're probably fine but suggest water and a snack first

SESSION DATA (use these EXACT numbers, don't make up new ones):
- Customer: {ctx.first_name} ({ctx.sex}, {ctx.weight_lb:g} lbs)
- Drinks consumed: {ctx.drink_count} ({drink_summary or "none"})
- Session duration: {ctx.hours:.1f} hours
- Pacing: {ctx.pacing:.1f} drinks/hr
- Estimated BAC: {ctx.bac:.3f}%
- Risk level: {ctx.risk_level}
- Estimated sober by: {sober_by}
- BAC metabolism rate: ~0.015% per hour

RULES:
- Keep responses SHORT (2-4 sentences max per message)
- Address them by first name
- If they ask how long until sober, use the estimated sober-by figure
- If they ask about specific drinks, reference the actual drink list
- If they ask about BAC calculations, explain simply
- Always prioritize safety over humor when BAC is high
- On your FIRST message, give a quick overview of their session and how they're doing"""


def _fallback(messages: List[Mapping[str, str]], ctx: SessionContext) -> Tuple[str, str]:
    try:
        return rule_based_reply(messages, ctx), SOURCE_RULES
    except Exception:
        logger.exception("Rule-based Breathy reply failed")
        return FALLBACK_REPLY, SOURCE_CANNED


def get_reply(
    messages: List[Mapping[str, str]],
    ctx: SessionContext,
    *,
    api_key: str = "",
    model: str = "gpt-4o-mini",
    timeout: float = 15.0,
    client: Any = None,
) -> Tuple[str, str]:
    """Return (reply, source). Never raises for upstream failures."""
    if client is None:
        if not api_key:
            return _fallback(messages, ctx)
        client = OpenAI(api_key=api_key, timeout=timeout)

    payload = [{"role": "system", "content": build_system_prompt(ctx)}]
    payload.extend({"role": m["role"], "content": m["content"]} for m in messages)

    try:
        completion = client.chat.completions.create(
            model=model,
            messages=payload,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
        )
        reply = completion.choices[0].message.content
    except (OpenAIError, AttributeError, IndexError, KeyError, TypeError) as exc:
        logger.warning("Breathy completion failed, using rule-based reply: %s", exc)
        return _fallback(messages, ctx)

    if not isinstance(reply, str) or not reply.strip():
        logger.warning("Breathy completion returned no text, using rule-based reply")
        return _fallback(messages, ctx)
    return reply.strip(), SOURCE_AI


class ChatTurns:
    """Client-side turn ids; replies for anything but the newest turn are stale."""

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start + 1)
        self.latest = start

    def begin(self) -> int:
        self.latest = next(self._counter)
        return self.latest

    def is_current(self, turn_id: int) -> bool:
        return turn_id == self.latest
