from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from lodge_gateway import constants
from lodge_gateway.schemas import ChatRequest, ExplainRequest, PlanRequest, ResearchRequest, SuggestRequest
from lodge_gateway.services import ai_service, relay


router = APIRouter(prefix="/api/ai", tags=["ai"])


def _relay_response(reply: relay.RelayReply) -> Response:
	if reply.kind == "stream" and reply.chunks is not None:
		return StreamingResponse(
			reply.chunks,
			media_type=constants.EVENT_STREAM_MEDIA_TYPE,
			headers=constants.STREAM_HEADERS,
			background=BackgroundTask(reply.chunks.close),
		)
	if reply.kind == "json":
		return JSONResponse(status_code=reply.status_code, content=reply.json_body)
	return Response(content=reply.text_body, status_code=reply.status_code, media_type=reply.media_type)


@router.post("/chat")
def chat(request: Request, payload: ChatRequest):
	reply = relay.relay_chat(payload, accept=request.headers.get("accept"))
	return _relay_response(reply)


@router.post("/plan")
def plan(payload: PlanRequest):
	return ai_service.generate_plan(context=payload.context, listing=payload.listing)


@router.post("/suggest")
def suggest(payload: SuggestRequest):
	return ai_service.suggest_choice(
		question_id=payload.question_id,
		choices=[choice.model_dump(exclude_none=True) for choice in payload.choices],
		context=payload.context,
	)


@router.post("/explain")
def explain(payload: ExplainRequest):
	return ai_service.explain_topic(
		topic=payload.topic,
		context=payload.context,
		second_opinion=payload.second_opinion,
	)


@router.post("/research")
def research(payload: ResearchRequest):
	return ai_service.research_query(
		query=payload.query,
		serious_mode=payload.serious_mode,
		humor_dial=payload.humor_dial,
		allowed_domains=payload.allowed_domains,
	)
