from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..assistant import AssistantConfig, AssistantError, ProductivityAssistant, build_context_prompt
from ..auth import get_current_profile
from ..models import ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import ChatRequest, ChatResponse
from ..settings import get_settings

router = APIRouter(
    prefix="/api/v1/assistant",
    tags=["assistant"],
)


# PUBLIC_INTERFACE
def get_assistant() -> ProductivityAssistant:
    """
    Dependency returning an assistant for the configured model.

    Raises:
        HTTPException(503) when no OpenAI API key is configured.
    """
    config = AssistantConfig.from_settings(get_settings())
    if config is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Assistant is not configured")
    return ProductivityAssistant(config)


# PUBLIC_INTERFACE
def require_pro_profile(profile: ProfileEntity = Depends(get_current_profile)) -> ProfileEntity:
    """Dependency admitting only Pro users; resolved before the assistant is built."""
    if profile["role"] != "pro_user":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="AI assistant is only available for Pro users. Upgrade to access this feature!",
        )
    return profile


# PUBLIC_INTERFACE
@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Ask the Assistant",
    description="Answer a question using the caller's tasks, habits, goals and milestones as context.",
    responses={
        403: {"description": "Assistant is only available to Pro users"},
        502: {"description": "The language model did not answer"},
        503: {"description": "Assistant is not configured"},
    },
)
def chat(
    payload: ChatRequest,
    profile: ProfileEntity = Depends(require_pro_profile),
    repo: Repository = Depends(get_repository),
    assistant: ProductivityAssistant = Depends(get_assistant),
) -> ChatResponse:
    user_id = profile["id"]
    tasks = repo.list_all_tasks(user_id)
    context = build_context_prompt(
        tasks,
        repo.list_habits(user_id),
        repo.list_goals(user_id),
        repo.list_milestones(user_id),
    )
    try:
        reply = assistant.ask(context + payload.message)
    except AssistantError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return ChatResponse(response=reply)
