import asyncio
import json

import httpx
import pytest

from errors import UpstreamServiceError
from models import ChatMessage
from services.external_service import SYSTEM_PROMPT, ChatCompletionClient


def openai_reply(text):
    return lambda request: httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def test_reply_is_stored_with_recommendations(client, db, upstream, catalog, customer):
    _, headers = customer
    upstream.on("api.openai.com", openai_reply("Try the 18V drill."))

    response = client.post("/api/chat/message", json={"message": "batteries"}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Try the 18V drill."
    assert [p["name"] for p in body["recommendations"]] == ["Cordless drill 18V"]

    stored = db.query(ChatMessage).filter(ChatMessage.id == body["messageId"]).one()
    assert stored.is_user is False
    assert stored.message_metadata["recommendations"][0]["name"] == "Cordless drill 18V"


def test_history_is_sent_oldest_first(client, upstream, customer):
    _, headers = customer
    upstream.on("api.openai.com", openai_reply("Hello!"))
    client.post("/api/chat/message", json={"message": "first question"}, headers=headers)

    client.post("/api/chat/message", json={"message": "second question"}, headers=headers)

    sent = json.loads(upstream.requests[-1].content)["messages"]
    assert sent[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert [m["content"] for m in sent[1:]] == ["first question", "Hello!", "second question"]


def test_provider_failure_keeps_user_message(client, db, upstream, customer):
    user, headers = customer
    upstream.on("api.openai.com", lambda request: httpx.Response(429, json={"error": {"message": "Rate limited"}}))

    response = client.post("/api/chat/message", json={"message": "anyone there?"}, headers=headers)

    assert response.status_code == 502
    assert response.json()["detail"] == "Rate limited"
    messages = db.query(ChatMessage).filter(ChatMessage.user_id == user.id).all()
    assert [(m.message, m.is_user) for m in messages] == [("anyone there?", True)]


def test_empty_message_rejected(client, customer):
    _, headers = customer
    assert client.post("/api/chat/message", json={"message": "   "}, headers=headers).status_code == 400
    assert client.post("/api/chat/message", json={}, headers=headers).status_code == 400


def test_history_endpoint(client, upstream, customer):
    _, headers = customer
    upstream.on("api.openai.com", openai_reply("Sure."))
    client.post("/api/chat/message", json={"message": "hi"}, headers=headers)

    body = client.get("/api/chat/history", headers=headers).json()

    assert [(m["message"], m["isUser"]) for m in body["messages"]] == [("hi", True), ("Sure.", False)]
    assert body["messages"][1]["metadata"] == {"recommendations": []}
    assert body["pagination"]["total"] == 2


def test_timeout_and_unknown_provider():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    async def scenario(provider, handler):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await ChatCompletionClient(http_client, provider=provider).complete([], "hi")

    with pytest.raises(UpstreamServiceError, match="AI provider timed out"):
        asyncio.run(scenario("openai", timeout))
    with pytest.raises(UpstreamServiceError, match="Invalid AI provider"):
        asyncio.run(scenario("claude", timeout))


def test_gemini_reply():
    def gemini(request):
        assert request.url.path.endswith(":generateContent")
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Xin chao"}]}}]})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(gemini)) as http_client:
            return await ChatCompletionClient(http_client, provider="gemini").complete([], "hi")

    assert asyncio.run(scenario()) == "Xin chao"
