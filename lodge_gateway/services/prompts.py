from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional


_PERSONA = """
You are "Lenny Lodge", a host specialist for a New York move planner.
Tone: calm, professional, and practical. Light dry humor is allowed, never forced.
Never joke about death, loss, aging, or money anxiety.
Keep answers structured and actionable.
""".strip()

_LEGAL_DISCLAIMER = (
	'If the user asks about legal/tax/contract topics, include: "Educational guidance only; '
	'consult a NY real estate attorney/CPA as appropriate."'
)

_LEGAL_MARKERS = (
	"contract",
	"contingency",
	"attorney",
	"legal",
	"tax",
	"irs",
	"capital gains",
	"title",
	"escrow",
	"closing disclosure",
	"mortgage",
	"lender",
)

_FRESHNESS_MARKERS = ("today", "current", "latest", "2025", "2026", "rate", "deadline", "law change", "updated")

PLAN_SYSTEM = f"""{_PERSONA}
Produce a move plan as STRICT JSON with this shape:
{{"ok": true,
  "recommended": {{"name", "rationale", "whenItWorks", "biggestRisks", "mitigations": [..]}},
  "alternatives": [{{"name", "rationale", "whenItWorks"}}] (at most 2),
  "timeline": [{{"milestone", "stage", "targetWindow", "notes"}}],
  "next3": [{{"step", "why"}}] (exactly 3),
  "watchOuts": [..]}}
Return ONLY valid JSON. No markdown. No extra keys."""

SUGGEST_SYSTEM = f"""{_PERSONA}
Pick the single best choice value for the user based on context.
Return ONLY valid JSON matching: {{"ok":true,"value":<one_of_choice_values>,"reason":"..."}}.
Never include extra keys, markdown, or commentary outside JSON."""

EXPLAIN_SYSTEM = f"""{_PERSONA}
Explain clearly, in plain language, with short sections and actionable takeaways."""


def _json(value: Any) -> str:
	return json.dumps(value, ensure_ascii=False, default=str)


def mentions_legal_topic(text: str) -> bool:
	lowered = text.lower()
	return any(marker in lowered for marker in _LEGAL_MARKERS)


def needs_fresh_information(topic: str) -> bool:
	lowered = topic.lower()
	return any(marker in lowered for marker in _FRESHNESS_MARKERS)


def chat_system(user_message: str) -> str:
	if mentions_legal_topic(user_message):
		return f"{_PERSONA}\n{_LEGAL_DISCLAIMER}"
	return _PERSONA


def plan_user(context: Any) -> str:
	return f"Context (JSON):\n{_json(context)}\n\nOutput the plan JSON now."


def suggest_user(question_id: str, choices: List[dict], context: Any) -> str:
	return f"questionId: {question_id}\nchoices: {_json(choices)}\ncontext: {_json(context)}\n"


def explain_user(topic: str, context: Any) -> str:
	return f"Topic:\n{topic}\n\nContext (JSON):\n{_json(context)}\n\nExplain it clearly and concisely."


def research_instructions(*, serious_mode: bool, humor_dial: Optional[str]) -> str:
	dial = "low" if serious_mode else (humor_dial or "medium")
	parts: Iterable[str] = (
		_PERSONA,
		f"Humor dial: {dial}.",
		"If you cite sources, make them clickable Markdown links.",
		(
			"Educational disclaimer: this is general information, not legal/financial advice. "
			"Confirm time-sensitive questions with your attorney, lender, and title company."
		)
		if serious_mode
		else "",
		"Task: Research the user's query using web search when helpful, then answer clearly.",
	)
	return "\n\n".join(part for part in parts if part)
