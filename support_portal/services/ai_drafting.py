"""AI drafting assistant.

Turns resolved ticket conversations into knowledge-base article drafts and
proposes reply options for support staff. Both go through a
chat-completions compatible endpoint.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.config import get_settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)


class AIRateLimitError(UpstreamError):
    """The completion endpoint is throttling requests (HTTP 429)."""

    def __init__(self):
        super().__init__("Rate limit exceeded. Please try again in a moment.", status_code=429)


class AICreditsExhaustedError(UpstreamError):
    """The completion account is out of credits (HTTP 402)."""

    def __init__(self):
        super().__init__("AI usage limit reached. Please add credits.", status_code=402)


class AINotConfiguredError(UpstreamError):
    def __init__(self):
        super().__init__("AI drafting is not configured", status_code=503)


@dataclass
class ConversationMessage:
    author: str
    content: str
    is_internal: bool = False


@dataclass
class ArticleDraft:
    """Parsed article draft. Never persisted until staff save it."""
    title: str
    excerpt: str
    content: str


@dataclass
class ReplySuggestion:
    label: str
    text: str


_TITLE_RE = re.compile(r"TITLE:\s*(.+)")
_EXCERPT_RE = re.compile(r"EXCERPT:\s*(.+)")
_CONTENT_RE = re.compile(r"CONTENT:\s*([\s\S]+)")


def parse_article_draft(completion: str, fallback_title: str) -> ArticleDraft:
    """Split a ``TITLE:/EXCERPT:/CONTENT:`` completion into its parts.

    A missing title falls back to the ticket title and missing content to
    the raw completion.
    """
    title = _TITLE_RE.search(completion)
    excerpt = _EXCERPT_RE.search(completion)
    content = _CONTENT_RE.search(completion)
    return ArticleDraft(
        title=(title.group(1).strip() if title else "") or fallback_title,
        excerpt=excerpt.group(1).strip() if excerpt else "",
        content=(content.group(1).strip() if content else "") or completion,
    )


def parse_reply_suggestions(response: dict[str, Any]) -> list[ReplySuggestion]:
    """Read suggestions from a tool call, falling back to JSON message content."""
    choices = response.get("choices") or []
    if not choices:
        return []
    message = choices[0].get("message") or {}

    raw: Any = []
    tool_calls = message.get("tool_calls") or []
    try:
        if tool_calls and tool_calls[0].get("function", {}).get("arguments"):
            raw = json.loads(tool_calls[0]["function"]["arguments"]).get("suggestions", [])
        else:
            raw = json.loads(message.get("content") or "[]")
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse reply suggestions: {e}")
        return []

    if not isinstance(raw, list):
        return []
    return [
        ReplySuggestion(label=str(item.get("label", "")), text=str(item.get("text", "")))
        for item in raw
        if isinstance(item, dict) and item.get("text")
    ]


class DraftingAssistant:
    """
    Client for the completion endpoint.

    Internal notes are never sent when drafting articles, since the
    result is meant to be published to every client.
    """

    ARTICLE_PROMPT = """You are a technical writer for a digital agency's knowledge base. Your job is to transform support ticket conversations into helpful, generalized knowledge base articles.

Rules:
- Remove all client-specific details (names, company names, URLs, account info)
- Write in a clear, professional tone suitable for any client
- Structure with a clear title, introduction, step-by-step instructions where applicable, and a summary
- Use markdown formatting (headings, bullet points, code blocks if relevant)
- Include a brief excerpt (1-2 sentences) at the start that summarizes the article
- Make the content actionable and self-service oriented
- If the resolution involved multiple steps, present them as numbered instructions

Return your response in this exact format:
TITLE: [article title]
EXCERPT: [1-2 sentence summary]
CONTENT:
[full article content in markdown]"""

    REPLY_PROMPT = """You are an AI assistant helping support staff at a digital agency respond to client tickets. Generate helpful reply suggestions.

Rules:
- Provide exactly 3 suggested replies: one brief acknowledgement, one detailed technical response, and one that asks clarifying questions
- Keep each reply professional, empathetic, and actionable
- Do not include greetings or sign-offs, just the message body
- Each reply should be 2-4 sentences max
- Consider the ticket category and conversation context

Return your response as a JSON array of objects with "label" and "text" fields."""

    REPLY_TOOL = {
        "type": "function",
        "function": {
            "name": "suggest_replies",
            "description": "Return 3 suggested reply options for the support agent.",
            "parameters": {
                "type": "object",
                "properties": {
                    "suggestions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "label": {"type": "string"},
                                "text": {"type": "string"},
                            },
                            "required": ["label", "text"],
                        },
                    },
                },
                "required": ["suggestions"],
            },
        },
    }

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        settings = get_settings()
        self.url = settings.completion_url
        self.api_key = settings.completion_api_key
        self.model = settings.completion_model
        self.http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def draft_article(
        self,
        ticket_title: str,
        ticket_description: str | None,
        messages: list[ConversationMessage],
        category_name: str | None = None,
    ) -> ArticleDraft:
        conversation = "\n\n".join(
            f"{m.author}: {m.content}" for m in messages if not m.is_internal
        )
        lines = [
            "Transform this support ticket into a knowledge base article:",
            "",
            f"Ticket Title: {ticket_title}",
        ]
        if ticket_description:
            lines.append(f"Description: {ticket_description}")
        if category_name:
            lines.append(f"Category: {category_name}")
        lines += ["", "Conversation:", conversation]

        response = await self._complete(
            {
                "messages": [
                    {"role": "system", "content": self.ARTICLE_PROMPT},
                    {"role": "user", "content": "\n".join(lines)},
                ]
            }
        )
        content = _message_content(response)
        return parse_article_draft(content, ticket_title)

    async def suggest_replies(
        self,
        ticket_title: str,
        ticket_description: str | None,
        messages: list[ConversationMessage],
        category: str | None = None,
    ) -> list[ReplySuggestion]:
        conversation = "\n\n".join(
            f"{'[Internal] ' if m.is_internal else ''}{m.author}: {m.content}"
            for m in messages
        )
        lines = [f"Ticket: {ticket_title}"]
        if ticket_description:
            lines.append(f"Description: {ticket_description}")
        if category:
            lines.append(f"Category: {category}")
        lines += ["", "Conversation so far:", conversation or "(No messages yet)"]

        response = await self._complete(
            {
                "messages": [
                    {"role": "system", "content": self.REPLY_PROMPT},
                    {"role": "user", "content": "\n".join(lines)},
                ],
                "tools": [self.REPLY_TOOL],
                "tool_choice": {"type": "function", "function": {"name": "suggest_replies"}},
            }
        )
        return parse_reply_suggestions(response)

    async def _complete(self, body: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured:
            raise AINotConfiguredError()

        payload = {"model": self.model, **body}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        client = self.http_client or httpx.AsyncClient(timeout=60.0)
        try:
            response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Completion endpoint unreachable: {e}")
            raise UpstreamError("AI gateway error") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if response.status_code == 429:
            raise AIRateLimitError()
        if response.status_code == 402:
            raise AICreditsExhaustedError()
        if response.status_code != 200:
            logger.error(f"Completion API error: {response.status_code} - {response.text}")
            raise UpstreamError("AI gateway error", status_code=response.status_code)

        return response.json()


def _message_content(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("message") or {}).get("content") or ""
