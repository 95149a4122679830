"""Breathy completion client: AI path, fallbacks and turn tracking."""
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from bartab import breathy
from bartab.context import DrinkSummary, SessionContext
from bartab.responder import rule_based_reply

CTX = SessionContext(
    name="Jamie Lee",
    bac=0.09,
    drink_count=3,
    hours=1.5,
    pacing=2.0,
    risk_level="danger",
    hours_until_sober=6.0,
    sex="female",
    weight_lb=140,
    drinks=[DrinkSummary("Vodka", 44, 45.0), DrinkSummary("Ale", 355, 4.5), DrinkSummary("Gin", 44, 44.25)],
)
MESSAGES = [{"role": "user", "content": "Hey Breathy, how did I do tonight?"}]


class FakeCompletions:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return self.response


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def test_without_key_uses_rules():
    reply, source = breathy.get_reply(MESSAGES, CTX, api_key="")
    assert source == breathy.SOURCE_RULES
    assert reply == rule_based_reply(MESSAGES, CTX)


def test_ai_reply_and_request_shape():
    completions = FakeCompletions(response=completion("  Jamie, get a ride home tonight.  "))
    reply, source = breathy.get_reply(MESSAGES, CTX, model="gpt-4o-mini", client=fake_client(completions))
    assert (reply, source) == ("Jamie, get a ride home tonight.", breathy.SOURCE_AI)

    call = completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["max_tokens"] == 250
    assert call["temperature"] == 0.8
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1:] == MESSAGES


def test_system_prompt_carries_exact_session_numbers():
    prompt = breathy.build_system_prompt(CTX)
    assert "Estimated BAC: 0.090%" in prompt
    assert "Jamie (female, 140 lbs)" in prompt
    assert "Vodka (44ml, 45% ABV)" in prompt
    assert "approximately 6.0 hours from now" in prompt
    assert "Pacing: 2.0 drinks/hr" in prompt


def test_api_error_falls_back_to_rules():
    completions = FakeCompletions(exc=OpenAIError("connection reset"))
    reply, source = breathy.get_reply(MESSAGES, CTX, client=fake_client(completions))
    assert source == breathy.SOURCE_RULES
    assert reply == rule_based_reply(MESSAGES, CTX)


@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(choices=[]),
        completion(None),
        completion("   "),
        SimpleNamespace(),
    ],
)
def test_malformed_response_falls_back_to_rules(response):
    reply, source = breathy.get_reply(MESSAGES, CTX, client=fake_client(FakeCompletions(response=response)))
    assert source == breathy.SOURCE_RULES


def test_broken_rules_fall_back_to_canned_reply(monkeypatch):
    def boom(messages, ctx):
        raise RuntimeError("bad rule")

    monkeypatch.setattr(breathy, "rule_based_reply", boom)
    reply, source = breathy.get_reply(MESSAGES, CTX)
    assert (reply, source) == (breathy.FALLBACK_REPLY, breathy.SOURCE_CANNED)


def test_validate_messages():
    ok, error = breathy.validate_messages([{"role": "user", "content": "  hi  "}])
    assert error is None and ok == [{"role": "user", "content": "hi"}]
    assert breathy.validate_messages([])[1]
    assert breathy.validate_messages("hi")[1]
    assert breathy.validate_messages([{"role": "system", "content": "x"}])[1]
    assert breathy.validate_messages([{"role": "user", "content": ""}])[1]
    assert breathy.validate_messages([{"role": "user", "content": "x"}] * 41)[1]


def test_chat_turns_mark_older_requests_stale():
    turns = breathy.ChatTurns()
    first = turns.begin()
    second = turns.begin()
    assert second > first
    assert not turns.is_current(first)
    assert turns.is_current(second)
