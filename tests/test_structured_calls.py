import copy
import json
from unittest import TestCase

from fakes import VALID_PLAN, ScriptedCall, answer, failure, gateway_env, raw_reply, unreachable

from lodge_gateway import constants
from lodge_gateway.errors import GatewayError
from lodge_gateway.schemas import ListingSnapshot
from lodge_gateway.services import ai_service
from lodge_gateway.services.structured import extract_json_object


PLAN_TEXT = json.dumps(VALID_PLAN)


class ExtractJsonObjectTests(TestCase):
	def test_plain_fenced_and_wrapped_objects(self) -> None:
		self.assertEqual(extract_json_object('{"a": 1}'), {"a": 1})
		self.assertEqual(extract_json_object('```json\n{"a": 1}\n```'), {"a": 1})
		self.assertEqual(extract_json_object('Sure! Here it is: {"a": {"b": 2}} Enjoy.'), {"a": {"b": 2}})

	def test_non_objects_are_rejected(self) -> None:
		for raw in ("", "no json here", "[1, 2]", "{broken", "} backwards {"):
			self.assertIsNone(extract_json_object(raw), raw)


class PlanOrchestrationTests(TestCase):
	def test_valid_first_answer_is_one_call(self) -> None:
		call = ScriptedCall(answer(PLAN_TEXT))
		with gateway_env(OPENAI_API_KEY="sk-test"):
			plan = ai_service.generate_plan(context={"goal": "move"}, call=call)
		self.assertEqual(plan, VALID_PLAN)
		self.assertEqual(call.providers, ["openai"])

	def test_invalid_then_valid_uses_two_calls_on_same_provider(self) -> None:
		call = ScriptedCall(answer("I think you should sell first."), answer(PLAN_TEXT))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"):
			plan = ai_service.generate_plan(context={}, call=call)
		self.assertEqual(plan, VALID_PLAN)
		self.assertEqual(call.providers, ["openai", "openai"])
		retry_prompt = call.request(1).messages[-1].content
		self.assertTrue(retry_prompt.endswith(constants.CORRECTIVE_NUDGE))
		self.assertNotIn(constants.CORRECTIVE_NUDGE, call.request(0).messages[-1].content)

	def test_server_errors_fall_back_to_configured_secondary(self) -> None:
		call = ScriptedCall(failure(503), failure(503), answer(PLAN_TEXT))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"):
			plan = ai_service.generate_plan(context={}, call=call)
		self.assertEqual(plan, VALID_PLAN)
		self.assertEqual(call.providers, ["openai", "openai", "xai"])
		self.assertTrue(call.request(2).messages[-1].content.endswith(constants.CORRECTIVE_NUDGE))

	def test_rate_limit_also_allows_fallback(self) -> None:
		call = ScriptedCall(failure(429), answer("nope"), answer(PLAN_TEXT))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"):
			plan = ai_service.generate_plan(context={}, call=call)
		self.assertEqual(plan, VALID_PLAN)
		self.assertEqual(call.providers, ["openai", "openai", "xai"])

	def test_without_secondary_exhaustion_is_plan_unavailable(self) -> None:
		call = ScriptedCall(failure(503), failure(503))
		with gateway_env(OPENAI_API_KEY="sk-test"), self.assertRaises(GatewayError) as raised:
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(raised.exception.status_code, 502)
		self.assertEqual(raised.exception.code, "PLAN_UNAVAILABLE")
		self.assertEqual(raised.exception.upstream_status, 503)
		self.assertEqual(len(call.calls), 2)

	def test_client_error_does_not_fall_back(self) -> None:
		call = ScriptedCall(failure(400), failure(400))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"), self.assertRaises(GatewayError) as raised:
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(call.providers, ["openai", "openai"])
		self.assertEqual(raised.exception.upstream_status, 400)

	def test_fallback_depends_on_first_attempt_status(self) -> None:
		call = ScriptedCall(answer("prose"), failure(503))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"), self.assertRaises(GatewayError) as raised:
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(call.providers, ["openai", "openai"])
		self.assertEqual(raised.exception.upstream_status, 200)

	def test_transport_failures_count_as_invalid_attempts(self) -> None:
		call = ScriptedCall(unreachable(), unreachable("timeout"))
		with gateway_env(OPENAI_API_KEY="sk-test", XAI_API_KEY="xai-test"), self.assertRaises(GatewayError) as raised:
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(raised.exception.code, "PLAN_UNAVAILABLE")
		self.assertEqual(raised.exception.upstream_status, 0)
		self.assertEqual(len(call.calls), 2)

	def test_one_wrong_field_invalidates_the_plan(self) -> None:
		broken = copy.deepcopy(VALID_PLAN)
		broken["next3"] = broken["next3"][:2]
		wrong_type = copy.deepcopy(VALID_PLAN)
		wrong_type["timeline"][0]["notes"] = 42
		call = ScriptedCall(answer(json.dumps(broken)), answer(json.dumps(wrong_type)))
		with gateway_env(OPENAI_API_KEY="sk-test"), self.assertRaises(GatewayError):
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(len(call.calls), 2)

	def test_fenced_plan_with_extra_keys_is_accepted(self) -> None:
		noisy = dict(VALID_PLAN, commentary="extra")
		call = ScriptedCall(raw_reply("unused"), answer(f"```json\n{json.dumps(noisy)}\n```"))
		with gateway_env(OPENAI_API_KEY="sk-test"):
			plan = ai_service.generate_plan(context={}, call=call)
		self.assertEqual(plan, VALID_PLAN)

	def test_missing_primary_key_fails_before_any_call(self) -> None:
		call = ScriptedCall()
		with gateway_env(XAI_API_KEY="xai-test"), self.assertRaises(GatewayError) as raised:
			ai_service.generate_plan(context={}, call=call)
		self.assertEqual(raised.exception.status_code, 500)
		self.assertEqual(raised.exception.code, "OPENAI_NOT_CONFIGURED")
		self.assertEqual(call.calls, [])

	def test_listing_snapshot_is_sent_with_answers(self) -> None:
		listing = ListingSnapshot(title="2BR in Astoria", price=725000, source="https://listing.example/1")
		call = ScriptedCall(answer(PLAN_TEXT))
		with gateway_env(OPENAI_API_KEY="sk-test"):
			ai_service.generate_plan(context={"timeline": "6 months"}, listing=listing, call=call)
		prompt = call.request(0).messages[-1].content
		self.assertIn('"answers": {"timeline": "6 months"}', prompt)
		self.assertIn("2BR in Astoria", prompt)
		self.assertIn("https://listing.example/1", prompt)


class SuggestOrchestrationTests(TestCase):
	CHOICES = [
		{"label": "Sell first", "value": "sell_first"},
		{"label": "Buy first", "value": "buy_first"},
	]

	def _suggest(self, call, choices=None):
		with gateway_env(OPENAI_API_KEY="sk-test"):
			return ai_service.suggest_choice(
				question_id="sequence",
				choices=choices or self.CHOICES,
				context={"budget": "tight"},
				call=call,
			)

	def test_offered_value_is_accepted(self) -> None:
		call = ScriptedCall(answer('{"ok": true, "value": "buy_first", "reason": "Market is slow."}'))
		self.assertEqual(
			self._suggest(call),
			{"ok": True, "value": "buy_first", "reason": "Market is slow."},
		)

	def test_unoffered_value_retries_with_suggest_nudge(self) -> None:
		call = ScriptedCall(
			answer('{"ok": true, "value": "rent", "reason": "Flexible."}'),
			answer('{"ok": true, "value": "sell_first", "reason": "Frees equity."}'),
		)
		self.assertEqual(self._suggest(call)["value"], "sell_first")
		self.assertTrue(call.request(1).messages[-1].content.endswith(constants.SUGGEST_CORRECTIVE_NUDGE))

	def test_exhaustion_returns_first_choice_with_safe_default_reason(self) -> None:
		call = ScriptedCall(answer("no idea"), answer('{"ok": true, "value": "rent", "reason": "x"}'))
		self.assertEqual(
			self._suggest(call),
			{"ok": True, "value": "sell_first", "reason": constants.SAFE_DEFAULT_REASON},
		)

	def test_membership_is_type_strict(self) -> None:
		numeric = [{"label": "One", "value": 1}, {"label": "Two", "value": 2}]
		call = ScriptedCall(
			answer('{"ok": true, "value": "2", "reason": "string two"}'),
			answer('{"ok": true, "value": true, "reason": "boolean"}'),
		)
		result = self._suggest(call, numeric)
		self.assertEqual(result["reason"], constants.SAFE_DEFAULT_REASON)
		self.assertEqual(result["value"], 1)

	def test_integral_float_matches_integer_choice(self) -> None:
		numeric = [{"label": "One", "value": 1}, {"label": "Two", "value": 2}]
		call = ScriptedCall(answer('{"ok": true, "value": 2.0, "reason": "two"}'))
		self.assertEqual(self._suggest(call, numeric)["value"], 2)

	def test_boolean_choices(self) -> None:
		flags = [{"label": "Yes", "value": True}, {"label": "No", "value": False}]
		call = ScriptedCall(answer('{"ok": true, "value": false, "reason": "Not yet."}'))
		self.assertIs(self._suggest(call, flags)["value"], False)
