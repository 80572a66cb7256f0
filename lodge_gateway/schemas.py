from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, StringConstraints


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
ChoiceValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class HistoryMessage(BaseModel):
	model_config = ConfigDict(extra="forbid")

	role: Literal["user", "assistant"]
	content: str


class ChatRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, populate_by_name=True)

	message: str = Field(..., min_length=1, description="The user's chat message.")
	history: Optional[List[HistoryMessage]] = None
	research_mode: bool = Field(default=False, alias="researchMode")
	allowed_domains: Optional[List[NonEmptyStr]] = Field(default=None, alias="allowedDomains")


class ListingSnapshot(BaseModel):
	"""Listing fields pre-extracted by the import collaborator."""

	model_config = ConfigDict(extra="ignore")

	title: Optional[str] = None
	address: Optional[str] = None
	price: Optional[Union[float, str]] = None
	beds: Optional[float] = None
	baths: Optional[float] = None
	sqft: Optional[float] = None
	image: Optional[str] = None
	source: str
	missing: List[str] = Field(default_factory=list)


class PlanRequest(BaseModel):
	model_config = ConfigDict(extra="forbid")

	context: Any = None
	listing: Optional[ListingSnapshot] = None


class SuggestChoice(BaseModel):
	model_config = ConfigDict(extra="forbid")

	label: str
	value: ChoiceValue
	helper: Optional[str] = None


class SuggestRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	question_id: NonEmptyStr = Field(..., alias="questionId")
	choices: List[SuggestChoice] = Field(..., min_length=1)
	context: Any = None


class ExplainRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	topic: NonEmptyStr
	context: Any = None
	second_opinion: bool = Field(default=False, alias="secondOpinion")


class ResearchRequest(BaseModel):
	model_config = ConfigDict(extra="forbid", populate_by_name=True)

	query: NonEmptyStr
	serious_mode: bool = Field(default=False, alias="seriousMode")
	humor_dial: Optional[Literal["low", "medium", "high"]] = Field(default=None, alias="humorDial")
	allowed_domains: Optional[List[NonEmptyStr]] = Field(default=None, alias="allowedDomains")


# Model outputs. Strict field types: a wrong type anywhere rejects the whole payload.

Text = Annotated[StrictStr, StringConstraints(min_length=1)]


class _ModelOutput(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PlanOption(_ModelOutput):
	name: Text
	rationale: Text
	when_it_works: Text = Field(..., alias="whenItWorks")


class RecommendedPlan(PlanOption):
	biggest_risks: Text = Field(..., alias="biggestRisks")
	mitigations: List[Text] = Field(..., min_length=1)


class TimelineEntry(_ModelOutput):
	milestone: Text
	stage: Text
	target_window: Text = Field(..., alias="targetWindow")
	notes: Text


class NextStep(_ModelOutput):
	step: Text
	why: Text


class MovePlan(_ModelOutput):
	ok: Literal[True]
	recommended: RecommendedPlan
	alternatives: List[PlanOption] = Field(..., max_length=2)
	timeline: List[TimelineEntry]
	next3: List[NextStep] = Field(..., min_length=3, max_length=3)
	watch_outs: List[Text] = Field(..., alias="watchOuts", min_length=1)


class Suggestion(_ModelOutput):
	ok: Literal[True]
	value: ChoiceValue
	reason: Text
