from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from profit_iq.core.auth import CurrentUser, get_current_user
from profit_iq.core.dependencies import get_db
from profit_iq.schemas.chat import ChatMessageOut, ChatRequest, ChatResponse, ChatToolCallOut
from profit_iq.services.chat_service import run_project_chat
from profit_iq.services.chat_tools import ProjectChatTools, build_system_prompt
from profit_iq.services.project_service import get_owned_project

router = APIRouter()


@router.get("/projects/{project_id}/chat/tools")
async def list_chat_tools(
    project_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = get_owned_project(db, project_id, current_user.id)
    return {
        "system_prompt": build_system_prompt(project),
        "tools": ProjectChatTools(db, project.id).definitions(),
    }


@router.post("/projects/{project_id}/chat/tools/{tool_name}")
async def execute_chat_tool(
    project_id: str,
    tool_name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = get_owned_project(db, project_id, current_user.id)
    result = ProjectChatTools(db, project.id).execute(tool_name, arguments)
    return {"tool": tool_name, "result": result}


@router.post("/projects/{project_id}/chat", response_model=ChatResponse)
async def chat_with_project(
    project_id: str,
    payload: Optional[ChatRequest] = Body(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = get_owned_project(db, project_id, current_user.id)
    messages = [m.model_dump() for m in payload.messages] if payload and payload.messages else None
    reply = await run_project_chat(db, project, messages)
    return ChatResponse(
        message=ChatMessageOut(content=reply.content),
        tool_calls=[ChatToolCallOut(**call) for call in reply.tool_calls],
        steps=reply.steps,
        finish_reason=reply.finish_reason,
        model=reply.model,
        provider=reply.provider,
    )
