"""Tests for the drafting assistant and its response parsing."""

import json

import httpx
import pytest

from support_portal.services.ai_drafting import (
    AICreditsExhaustedError,
    AINotConfiguredError,
    AIRateLimitError,
    ConversationMessage,
    DraftingAssistant,
    parse_article_draft,
    parse_reply_suggestions,
)
from support_portal.services.errors import UpstreamError

CONVERSATION = [
    ConversationMessage("Client", "The menu overlaps the logo on my phone"),
    ConversationMessage("Support", "Client is on the legacy theme", is_internal=True),
    ConversationMessage("Support", "Clear the cache and reload"),
]


def assistant(handler) -> DraftingAssistant:
    drafting = DraftingAssistant(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    drafting.api_key = "test-key"
    return drafting


def completion(content: str) -> dict:
    return {"choices": [{"message": {"content": content}}]}


class TestParseArticleDraft:
    def test_structured_completion(self):
        draft = parse_article_draft(
            "TITLE: Fixing Mobile Menus\nEXCERPT: Short summary.\nCONTENT:\n## Steps\n1. Reload",
            "Menu broken",
        )
        assert draft.title == "Fixing Mobile Menus"
        assert draft.excerpt == "Short summary."
        assert draft.content == "## Steps\n1. Reload"

    def test_unstructured_completion_falls_back(self):
        draft = parse_article_draft("Just some prose.", "Menu broken")
        assert draft.title == "Menu broken"
        assert draft.excerpt == ""
        assert draft.content == "Just some prose."


class TestParseReplySuggestions:
    def test_tool_call(self):
        arguments = json.dumps(
            {"suggestions": [{"label": "Ack", "text": "Thanks, looking now."}, {"label": "x"}]}
        )
        response = {
            "choices": [
                {"message": {"tool_calls": [{"function": {"name": "suggest_replies", "arguments": arguments}}]}}
            ]
        }
        suggestions = parse_reply_suggestions(response)
        assert [(s.label, s.text) for s in suggestions] == [("Ack", "Thanks, looking now.")]

    def test_json_content_fallback(self):
        response = completion(json.dumps([{"label": "Ask", "text": "Which browser?"}]))
        assert parse_reply_suggestions(response)[0].text == "Which browser?"

    def test_garbage_yields_nothing(self):
        assert parse_reply_suggestions(completion("not json")) == []
        assert parse_reply_suggestions({"choices": []}) == []
        assert parse_reply_suggestions(completion('{"label": "x"}')) == []


class TestDraftingAssistant:
    async def test_internal_notes_are_not_sent_for_articles(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=completion("TITLE: T\nEXCERPT: E\nCONTENT:\nC"))

        draft = await assistant(handler).draft_article("Menu broken", None, CONVERSATION)

        prompt = bodies[0]["messages"][1]["content"]
        assert "legacy theme" not in prompt
        assert "Clear the cache" in prompt
        assert draft.title == "T"

    async def test_reply_suggestions_see_internal_notes(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=completion("[]"))

        await assistant(handler).suggest_replies("Menu broken", None, CONVERSATION)
        assert "[Internal] Support: Client is on the legacy theme" in bodies[0]["messages"][1]["content"]
        assert bodies[0]["tool_choice"]["function"]["name"] == "suggest_replies"

    @pytest.mark.parametrize(
        "status_code, error",
        [(429, AIRateLimitError), (402, AICreditsExhaustedError), (500, UpstreamError)],
    )
    async def test_error_statuses(self, status_code, error):
        drafting = assistant(lambda request: httpx.Response(status_code, text="nope"))
        with pytest.raises(error) as exc:
            await drafting.draft_article("Menu broken", None, CONVERSATION)
        assert exc.value.status_code == status_code

    async def test_not_configured(self):
        drafting = DraftingAssistant()
        drafting.api_key = None
        with pytest.raises(AINotConfiguredError) as exc:
            await drafting.suggest_replies("Menu broken", None, [])
        assert exc.value.status_code == 503
