"""Echo 模式端到端测试

默认 catalog + 演示账户 + Echo 上游：
1. alias 解析、计价、配额结算
2. SSE 流式输出
3. 停用账户被拒绝
"""

import json

import pytest
from modelgate.core.models import ExchangeOutcome

_HEADERS = {"X-Account-ID": "demo-user"}


def _body(content: str = "hello there", model: str = "gpt-4.1") -> dict:
    return {"model": model, "messages": [{"role": "user", "content": content}]}


class TestEchoChat:
    async def test_alias_routed_and_priced(self, client, integration_app):
        resp = await client.post("/api/v1/chat", json=_body(), headers=_HEADERS)
        assert resp.status_code == 200
        data = resp.json()

        assert data["content"] == "Echo: hello there"
        assert data["routing"]["selected_model"] == "gpt-4-turbo-preview"
        assert data["routing"]["used_fallback"] is False

        entry = integration_app.state.catalog.get_model("gpt-4-turbo-preview")
        expected = (
            data["tokens_in"] * entry.prompt_price_per_1k / 1000
            + data["tokens_out"] * entry.completion_price_per_1k / 1000
        )
        assert data["cost"] == pytest.approx(expected, abs=1e-9)

        usage = integration_app.state.account_guard.usage("demo-user")
        assert usage.requests_used == 1
        assert usage.tokens_used == data["tokens_in"] + data["tokens_out"]

        await integration_app.state.chat_service.drain()
        stored = await integration_app.state.store_group.exchange_store.get_exchange(
            data["exchange_id"]
        )
        assert stored.outcome == ExchangeOutcome.COMPLETED
        assert stored.requested_model == "gpt-4.1"

    async def test_guardrail_not_echoed(self, client):
        """Echo 回显最后一条 user 消息，guardrail system 消息不影响输出"""
        resp = await client.post("/api/v1/chat", json=_body("ping"), headers=_HEADERS)
        assert resp.json()["content"] == "Echo: ping"

    async def test_suspended_account(self, client):
        resp = await client.post(
            "/api/v1/chat",
            json=_body(model="gpt-4o-mini"),
            headers={"X-Account-ID": "guest"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["reason"] == "account_suspended"

    async def test_stream(self, client):
        events: list[tuple[str, dict]] = []
        current = ""
        async with client.stream(
            "POST", "/api/v1/chat/stream", json=_body("stream me"), headers=_HEADERS
        ) as response:
            assert response.status_code == 200
            async for line in response.aiter_lines():
                if line.startswith("event:"):
                    current = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    events.append((current, json.loads(line[len("data:"):].strip())))

        names = [name for name, _ in events]
        assert names[0] == "start"
        assert names[-1] == "done"
        text = "".join(d["text"] for name, d in events if name == "delta")
        assert text == "Echo: stream me"
        assert events[-1][1]["content"] == "Echo: stream me"
