import json
import unittest
from types import SimpleNamespace

from tests.helpers import AppTestCase, make_order, make_user

from bbd_app.agent import (
    GENERIC_ERROR_MESSAGE,
    INVALID_KEY_MESSAGE,
    RATE_LIMIT_MESSAGE,
    build_contents,
    execute_tool,
    friendly_error,
    run_agent,
    sse_event,
)
from bbd_app.constants import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES_REP


class FakeModels:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def generate_content(self, model, contents, config):
        self.calls.append(list(contents))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def fake_client(*responses):
    return SimpleNamespace(models=FakeModels(responses))


def text_response(text):
    return SimpleNamespace(function_calls=None, text=text)


def tool_response(name, args):
    return SimpleNamespace(
        function_calls=[SimpleNamespace(name=name, args=args)],
        candidates=[SimpleNamespace(content="model-turn")],
        text=None,
    )


def parse_events(chunks):
    events = []
    for chunk in chunks:
        assert chunk.startswith("data: ") and chunk.endswith("\n\n")
        events.append(json.loads(chunk[len("data: "):]))
    return events


class HelperTests(unittest.TestCase):
    def test_build_contents_roles(self):
        contents = build_contents(
            [
                {"role": "user", "content": "How many orders?"},
                {"role": "assistant", "content": "Twelve."},
            ]
        )
        self.assertEqual([c.role for c in contents], ["user", "model"])
        self.assertEqual(contents[0].parts[0].text, "How many orders?")

    def test_friendly_error(self):
        self.assertEqual(friendly_error(Exception("429 Too Many Requests")), RATE_LIMIT_MESSAGE)
        self.assertEqual(friendly_error(Exception("API_KEY_INVALID")), INVALID_KEY_MESSAGE)
        self.assertEqual(friendly_error(Exception("boom")), GENERIC_ERROR_MESSAGE)

    def test_sse_event(self):
        self.assertEqual(sse_event({"type": "done"}), 'data: {"type": "done"}\n\n')


class ToolTests(AppTestCase):
    def test_unknown_tool(self):
        with self.assertRaises(ValueError):
            execute_tool("dropTables", {})

    def test_order_stats_are_json_safe(self):
        rep = make_user(ROLE_SALES_REP, first_name="Rex", last_name="Seller")
        make_order(rep)
        make_order(rep, status="CANCELLED")
        rows = execute_tool("getOrderStats", {"groupBy": "salesRep"})
        self.assertEqual(rows, [{"group": "Rex Seller", "count": 2, "totalRevenue": 20000.0}])

        orders = execute_tool("getOrders", {"salesRepName": "rex", "limit": 1})
        self.assertEqual(len(orders), 1)
        self.assertIsInstance(orders[0]["totalPrice"], float)
        json.dumps(orders)


class RunAgentTests(AppTestCase):
    def test_plain_answer_is_chunked(self):
        answer = "There are forty-two active orders right now."
        client = fake_client(text_response(answer))
        events = parse_events(run_agent([{"role": "user", "content": "Count?"}], "key", client))

        texts = [e["content"] for e in events if e["type"] == "text"]
        self.assertEqual("".join(texts), answer)
        self.assertTrue(all(len(t) <= 20 for t in texts))
        self.assertEqual(events[-1], {"type": "done"})

    def test_tool_round_trip(self):
        make_order()
        client = fake_client(
            tool_response("getOrderStats", {"groupBy": "status"}),
            text_response("One active order."),
        )
        events = parse_events(run_agent([{"role": "user", "content": "Stats?"}], "key", client))

        self.assertEqual(events[0], {"type": "tool", "tool": "getOrderStats"})
        self.assertEqual(events[-1], {"type": "done"})
        second_call = client.models.calls[1]
        self.assertEqual(len(second_call), 3)
        self.assertEqual(second_call[1], "model-turn")
        self.assertEqual(second_call[2].role, "user")

    def test_failures_become_error_events(self):
        client = fake_client(RuntimeError("429 quota exceeded"))
        events = parse_events(run_agent([{"role": "user", "content": "Hi"}], "key", client))
        self.assertEqual(events, [{"type": "error", "content": RATE_LIMIT_MESSAGE}])


class AgentRouteTests(AppTestCase):
    def test_only_admins_and_managers(self):
        self.login(make_user(ROLE_SALES_REP))
        resp = self.post("/api/ai-agent", json={"messages": [{"role": "user", "content": "Hi"}]})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json(), {"error": "Forbidden"})

    def test_messages_required(self):
        self.login(make_user(ROLE_MANAGER))
        resp = self.post("/api/ai-agent", json={"messages": []})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Messages are required")

    def test_missing_api_key(self):
        self.login(make_user(ROLE_ADMIN))
        resp = self.post("/api/ai-agent", json={"messages": [{"role": "user", "content": "Hi"}]})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()["error"], "GEMINI_API_KEY not configured")


if __name__ == "__main__":
    unittest.main()
