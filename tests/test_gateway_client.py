import json
from typing import List
from unittest import TestCase

from fastapi.testclient import TestClient
from fakes import (
	VALID_PLAN,
	FakeUpstream,
	RoutedUpstream,
	gateway_env,
	json_response,
	responses_document,
	sse_response,
	text_response,
)

from lodge_gateway.client import (
	GatewayClient,
	GatewayClientError,
	InMemoryStore,
	StreamEvent,
	context_from_store,
)
from lodge_gateway.main import create_app


SSE_BODY = (
	'data: {"type":"response.output_text.delta","delta":"Brooklyn "}\n\n'
	'data: {"type":"response.output_text.delta","delta":"or Queens ✓"}\n\n'
	'data: {"type":"response.output_item.done","item":{"type":"web_search_call",'
	'"action":{"sources":[{"url":"https://a.example"}]}}}\n\n'
	"data: [DONE]\n\n"
).encode("utf-8")


class GatewayClientStreamTests(TestCase):
	def setUp(self) -> None:
		self.gateway = GatewayClient(http_client=TestClient(create_app()))

	def test_stream_chat_callbacks(self) -> None:
		deltas: List[str] = []
		sources: List[list] = []
		done: List[bool] = []
		upstream = FakeUpstream(sse_response(SSE_BODY))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			self.gateway.stream_chat(
				"Where should we look?",
				on_delta=deltas.append,
				on_sources=sources.append,
				on_done=lambda: done.append(True),
				research_mode=True,
			)
		self.assertEqual("".join(deltas), "Brooklyn or Queens ✓")
		self.assertEqual(sources, [[{"url": "https://a.example"}]])
		self.assertEqual(done, [True])
		self.assertEqual(upstream.body()["tools"], [{"type": "web_search"}])

	def test_allowed_domains_reach_the_search_tool(self) -> None:
		upstream = FakeUpstream(sse_response(SSE_BODY))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			self.gateway.stream_chat(
				"Where should we look?",
				on_delta=lambda _text: None,
				research_mode=True,
				allowed_domains=["nyc.gov", "streeteasy.com"],
			)
		self.assertEqual(
			upstream.body()["tools"],
			[{"type": "web_search", "filters": {"allowed_domains": ["nyc.gov", "streeteasy.com"]}}],
		)

	def test_degraded_json_is_replayed_as_events(self) -> None:
		document = responses_document("Buffered.", sources=[{"url": "https://b.example"}])
		upstream = RoutedUpstream(
			{
				("api.openai.com", True): text_response("overloaded", status=503),
				("api.openai.com", False): json_response(document),
			}
		)
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			events = list(self.gateway.iter_chat_events("Hello"))
		self.assertEqual(
			events,
			[
				StreamEvent("delta", "Buffered."),
				StreamEvent("sources", [{"url": "https://b.example"}]),
				StreamEvent("done"),
			],
		)

	def test_gateway_error_raises(self) -> None:
		with gateway_env(), self.assertRaises(GatewayClientError) as raised:
			list(self.gateway.iter_chat_events("Hello"))
		self.assertEqual(raised.exception.status_code, 500)
		self.assertEqual(raised.exception.message, "OPENAI_NOT_CONFIGURED")

	def test_passthrough_failure_raises_with_body_preview(self) -> None:
		upstream = FakeUpstream(text_response("overloaded", status=503), text_response("down", status=500))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch(), self.assertRaises(GatewayClientError) as raised:
			list(self.gateway.iter_chat_events("Hello"))
		self.assertEqual(raised.exception.status_code, 503)
		self.assertEqual(raised.exception.message, "Request failed (503): overloaded")


class GatewayClientStructuredTests(TestCase):
	def setUp(self) -> None:
		self.gateway = GatewayClient(http_client=TestClient(create_app()))

	def test_plan_from_stored_answers(self) -> None:
		store = InMemoryStore()
		store.set("household", {"adults": 2, "kids": 1})
		store.set("timeline", "before school starts")
		upstream = FakeUpstream(json_response(responses_document(json.dumps(VALID_PLAN))))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			plan = self.gateway.plan(context_from_store(store, ["household", "timeline", "budget"]))
		self.assertEqual(plan, VALID_PLAN)
		prompt = upstream.body()["input"][-1]["content"]
		self.assertIn('"household": {"adults": 2, "kids": 1}', prompt)
		self.assertIn("before school starts", prompt)
		self.assertNotIn("budget", prompt)

	def test_suggest_and_explain(self) -> None:
		upstream = FakeUpstream(
			json_response(responses_document('{"ok": true, "value": "rent", "reason": "Keeps options open."}')),
			json_response(responses_document("Renting first keeps options open.")),
		)
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			suggestion = self.gateway.suggest(
				"housing",
				[{"label": "Rent", "value": "rent"}, {"label": "Buy", "value": "buy"}],
			)
			explanation = self.gateway.explain("Why rent first?")
		self.assertEqual(suggestion["value"], "rent")
		self.assertEqual(explanation, {"ok": True, "text": "Renting first keeps options open."})

	def test_research(self) -> None:
		upstream = FakeUpstream(json_response(responses_document("Answer.")))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch():
			result = self.gateway.research("flip tax", serious_mode=True, allowed_domains=["nyc.gov"])
		self.assertEqual(result["text"], "Answer.")
		self.assertIn("Humor dial: low.", upstream.body()["instructions"])

	def test_structured_error_message(self) -> None:
		upstream = FakeUpstream(text_response("down", status=503))
		with gateway_env(OPENAI_API_KEY="sk-test"), upstream.patch(), self.assertRaises(GatewayClientError) as raised:
			self.gateway.plan({})
		self.assertEqual(raised.exception.status_code, 502)
		self.assertEqual(raised.exception.message, "PLAN_UNAVAILABLE")


class InMemoryStoreTests(TestCase):
	def test_values_are_copied_in_and_out(self) -> None:
		answers = {"rooms": [1, 2]}
		store = InMemoryStore({"answers": answers})
		answers["rooms"].append(3)
		fetched = store.get("answers")
		fetched["rooms"].append(4)
		self.assertEqual(store.get("answers"), {"rooms": [1, 2]})
		self.assertIsNone(store.get("missing"))

	def test_context_skips_unset_keys(self) -> None:
		store = InMemoryStore()
		store.set("a", 1)
		store.set("b", False)
		self.assertEqual(context_from_store(store, ["a", "b", "c"]), {"a": 1, "b": False})
