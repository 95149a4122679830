"""Rule-based Breathy replies, used when the completion API is unavailable.

Replies only quote figures from the ``SessionContext``; nothing is
recomputed here.
"""

import re
from typing import List, Mapping

from bartab.calculations import CAUTION_BAC, DANGER_BAC
from bartab.context import SessionContext

DRIVE_RE = re.compile(r"\b(drive|driving|car|behind the wheel)\b")
SOBER_RE = re.compile(r"\b(sober|how long|when can i|time|wait|hours)\b")
FEELING_RE = re.compile(r"\b(feel|feeling|how am i|drunk|wasted|buzzed|tipsy)\b")
HISTORY_RE = re.compile(r"\b(what did i|my drinks|what i had|drink list)\b")
YES_RE = re.compile(r"\b(yes|yeah|yep|uber|lyft|ride|taxi|cab|friend|walking)\b")
NO_RE = re.compile(r"^(no|nah|nope|not yet|i don't)\b")

NEAR_SOBER_BAC = 0.01


def _last_user_message(messages: List[Mapping[str, str]]) -> str:
    for m in reversed(messages):
        if m.get("role") == "user":
            return str(m.get("content") or "").lower()
    return ""


def _plural(count: int) -> str:
    return "s" if count > 1 else ""


def _opening(ctx: SessionContext) -> str:
    name = ctx.first_name
    bac = f"{ctx.bac:.3f}"
    hours = f"{ctx.hours:.1f}"
    if ctx.drink_count == 0:
        return (
            f"Hey {name}! 👋 Looks like you kept it clean tonight, zero drinks on the record. "
            "Designated driver vibes! You're good to go whenever you want."
        )
    if ctx.bac < CAUTION_BAC:
        return (
            f"Hey {name}! 😊 You had {ctx.drink_count} drink{_plural(ctx.drink_count)} over {hours} hours, "
            f"your BAC is at {bac}%. You're looking pretty good! How are you feeling?"
        )
    if ctx.bac < DANGER_BAC:
        return (
            f"Hey {name}! 🫣 {ctx.drink_count} drinks in {hours} hours puts your BAC at {bac}%. "
            "That's in the caution zone. Do you have a ride home lined up?"
        )
    return (
        f"{name}, real talk time. 🛑 Your BAC is {bac}% after {ctx.drink_count} drinks, "
        "that's above the legal limit. Please do not drive. Do you have a safe ride home?"
    )


def _driving(ctx: SessionContext) -> str:
    bac = f"{ctx.bac:.3f}"
    if ctx.bac >= DANGER_BAC:
        return (
            f"Absolutely not, {ctx.first_name}. 🛑 Your BAC is {bac}%, that's over the legal limit. "
            "Please call an Uber, Lyft, or a friend. No exceptions."
        )
    if ctx.bac >= CAUTION_BAC:
        return (
            f"I'd really recommend waiting, {ctx.first_name}. Your BAC is {bac}%, you should be good "
            f"in about {ctx.hours_until_sober} hours. Can you get a ride for now?"
        )
    return (
        f"You're at {bac}% which is under the limit. You're probably fine, but grab some water "
        "and a snack first. Trust your gut, if you feel off, get a ride. 🚗"
    )


def _sobriety(ctx: SessionContext) -> str:
    bac = f"{ctx.bac:.3f}"
    if ctx.bac <= NEAR_SOBER_BAC:
        return f"You're basically sober right now, {ctx.first_name}! Your BAC is {bac}%. You're good to go. 🌟"
    return (
        f"Your body burns off about 0.015% per hour. At {bac}%, you should be back to zero in roughly "
        f"{ctx.hours_until_sober} hours. Drink water and eat something. It won't speed things up, "
        "but you'll feel better! 💧"
    )


def _feeling(ctx: SessionContext) -> str:
    bac = f"{ctx.bac:.3f}"
    if ctx.bac < 0.03:
        return f"At {bac}%, you're barely buzzed. You might feel completely normal! 😌"
    if ctx.bac < 0.06:
        return (
            f"At {bac}%, you're probably feeling relaxed, maybe a bit chatty. Your judgment is slightly "
            "affected but you're in okay shape. 😊"
        )
    if ctx.bac < DANGER_BAC:
        return (
            f"At {bac}%, you're definitely feeling it: lowered inhibitions, slower reactions. "
            f"Be careful out there, {ctx.first_name}. 🫣"
        )
    return (
        f"At {bac}%, {ctx.first_name}, you're impaired. Coordination, judgment and reaction time "
        "are all taking a hit. Please get a safe ride. 🛑"
    )


def _history(ctx: SessionContext) -> str:
    if ctx.drink_count == 0:
        return "You didn't have anything tonight! Squeaky clean. 🧊"
    names = ", ".join(d.name for d in ctx.drinks)
    return (
        f"Tonight you had: {names}. That's {ctx.drink_count} drink{_plural(ctx.drink_count)} over "
        f"{ctx.hours:.1f} hours ({ctx.pacing:.1f}/hr). 🍹"
    )


def _affirmative(ctx: SessionContext) -> str:
    if ctx.bac >= DANGER_BAC:
        return (
            f"Good, I'm glad to hear that. 💛 Seriously, {ctx.first_name}, tonight was fun but getting "
            "home safe is what matters. Drink some water and take it easy!"
        )
    return f"Awesome! 💛 Glad you're being smart about it. Have a great rest of your night, {ctx.first_name}!"


def _negative(ctx: SessionContext) -> str:
    bac = f"{ctx.bac:.3f}"
    if ctx.bac >= DANGER_BAC:
        return (
            f"{ctx.first_name}, please figure out a ride before you leave. At {bac}%, driving is not an "
            "option. Can you call someone or open the Uber app? 🚕"
        )
    if ctx.bac >= CAUTION_BAC:
        return f"I'd strongly suggest getting a ride, {ctx.first_name}. You're at {bac}%, it's not worth the risk. 🚕"
    return "No worries! Just making sure you're all set. Anything else you wanna know before you head out?"


def default_tips(ctx: SessionContext) -> List[str]:
    return [
        "Anything else you wanna know? I can tell you when you'll be sober, how your pacing was, or just chat. 😊",
        'I\'m here if you have questions! Try asking me "can I drive?" or "how long until I\'m sober?" 🧪',
        f"{ctx.first_name}, if you're ready to go, just hit the close button. Otherwise, ask me anything about your session!",
    ]


# Checked in order against the latest user message.
_RULES = (
    (DRIVE_RE.search, _driving),
    (SOBER_RE.search, _sobriety),
    (FEELING_RE.search, _feeling),
    (HISTORY_RE.search, _history),
    (YES_RE.search, _affirmative),
    (NO_RE.match, _negative),
)


def rule_based_reply(messages: List[Mapping[str, str]], ctx: SessionContext) -> str:
    """One short reply for the conversation so far. Deterministic for a given input."""
    if len(messages) <= 1:
        return _opening(ctx)

    text = _last_user_message(messages)
    for matches, reply in _RULES:
        if matches(text):
            return reply(ctx)

    tips = default_tips(ctx)
    return tips[len(messages) % len(tips)]
