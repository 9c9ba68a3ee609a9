from __future__ import annotations

from typing import Any, Awaitable, Dict

from fastapi import APIRouter, HTTPException, Request

from workbook.backend import constants
from workbook.backend.ai.errors import AIServiceError
from workbook.backend.ai.pipeline import TherapeuticPipeline
from workbook.backend.ai.types import Mode
from workbook.backend.response import success_response
from workbook.backend.schemas import (
	AiConversationRequest,
	AiGuidanceRequest,
	AiInsightsRequest,
	AiPromptsRequest,
	AiRecommendationsRequest,
	AiSentimentRequest,
	AiSessionSummaryRequest,
	ApiEnvelope,
)
from workbook.backend.services import ai_service


router = APIRouter(prefix="/api/ai", tags=["ai"])


def _user_id_from_request(request: Request) -> str:
	user_id = request.headers.get(constants.USER_ID_HEADER, "").strip()
	if not user_id:
		raise HTTPException(
			status_code=401,
			detail={"code": "unauthenticated", "message": "Authentication required."},
		)
	return user_id


def _pipeline(request: Request) -> TherapeuticPipeline:
	try:
		return ai_service.pipeline_for(request.app)
	except AIServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc


async def _run(request: Request, call: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
	try:
		data = await call
	except AIServiceError as exc:
		raise HTTPException(
			status_code=exc.status_code,
			detail={"code": exc.code, "message": exc.message},
		) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return success_response(request=request, data=data)


@router.post("/guidance", response_model=ApiEnvelope)
async def guidance(request: Request, payload: AiGuidanceRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.GUIDANCE,
			chapter_id=payload.chapterId,
			section_id=payload.sectionId,
			user_responses=payload.userResponses,
			extra={"specific_challenges": payload.specificChallenges},
		),
	)


@router.post("/prompts", response_model=ApiEnvelope)
async def prompts(request: Request, payload: AiPromptsRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.REFLECTION_PROMPTS,
			chapter_id=payload.chapterId,
			section_id=payload.sectionId,
			user_responses=payload.userResponses,
			extra={"previous_response": payload.previousResponse},
		),
	)


@router.post("/insights", response_model=ApiEnvelope)
async def insights(request: Request, payload: AiInsightsRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.INSIGHTS,
			chapter_id=payload.chapterId,
			section_id=payload.sectionId,
			user_responses=payload.userResponses,
		),
	)


@router.post("/recommendations", response_model=ApiEnvelope)
async def recommendations(request: Request, payload: AiRecommendationsRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.RECOMMENDATIONS,
			chapter_id=payload.chapterId,
			section_id=payload.sectionId,
			user_responses=payload.userResponses,
		),
	)


@router.post("/conversation", response_model=ApiEnvelope)
async def conversation(request: Request, payload: AiConversationRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.converse(
			_pipeline(request),
			user_id=user_id,
			session_id=payload.sessionId,
			message=payload.message,
			conversation_type=payload.conversationType,
			chapter_id=payload.chapterId,
			section_id=payload.sectionId,
		),
	)


@router.get("/conversation/{session_id}", response_model=ApiEnvelope)
def conversation_history(request: Request, session_id: str):
	user_id = _user_id_from_request(request)
	return success_response(request=request, data=ai_service.conversation_history(user_id, session_id))


@router.post("/sentiment", response_model=ApiEnvelope)
async def sentiment(request: Request, payload: AiSentimentRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.SENTIMENT,
			extra={"text": payload.text},
		),
	)


@router.post("/session-summary", response_model=ApiEnvelope)
async def session_summary(request: Request, payload: AiSessionSummaryRequest):
	user_id = _user_id_from_request(request)
	return await _run(
		request,
		ai_service.generate(
			_pipeline(request),
			user_id=user_id,
			mode=Mode.SESSION_SUMMARY,
			extra={
				"conversations": payload.conversations,
				"insights": payload.insights,
				"guidance": payload.guidance,
			},
		),
	)
