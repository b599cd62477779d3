"""
MCP Host API Routes

Thin HTTP surface over the host core: chat turns, tool switches, roots,
tasks, sampling decisions, capability listings and the live update stream.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from mcp_host.api.models import (
    ChatRequest,
    ChatResponse,
    CompletionRequest,
    PromptGetRequest,
    ResourceReadRequest,
    RootDeleteRequest,
    RootRequest,
    SamplingDecisionRequest,
    TaskCancelRequest,
    TemplateReadRequest,
    ToolConfigRequest,
)
from mcp_host.chat.orchestrator import ResourceSelection, TemplateSelection
from mcp_host.core.session import HostSession
from mcp_host.mcp.exceptions import MCPClientError, RootExistsError

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_session(request: Request) -> HostSession:
    """Dependency injection for the host session from app state"""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Host session not initialized"
        )
    return session


def _upstream_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"{action} failed: {error}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


@router.get("/health", tags=["health"])
async def health_check(session: HostSession = Depends(get_session)):
    """Health check with the MCP connection state"""
    return {
        "status": "healthy",
        "service": "mcp-host",
        "version": "0.1.0",
        "mcp_state": session.client.state.value,
    }


@router.get("/config", tags=["health"])
async def get_config(session: HostSession = Depends(get_session)):
    return {
        "MCP_SERVER_URL": session.client.server_url,
        "MODEL": session.model,
        "SAMPLING_MODEL": session.sampling_model,
    }


# Model provider

@router.get("/models", tags=["models"])
async def list_models(session: HostSession = Depends(get_session)):
    """List models available from the provider"""
    try:
        page = await session.openai.models.list()
    except Exception as e:
        raise _upstream_error("Listing models", e)
    return {"models": [m.model_dump() if hasattr(m, "model_dump") else m for m in (page.data or [])]}


@router.post("/openai/completion", tags=["models"])
async def openai_completion(body: CompletionRequest, session: HostSession = Depends(get_session)):
    """Proxy a plain chat completion"""
    try:
        response = await session.openai.chat.completions.create(
            model=session.model,
            messages=body.messages,
            max_tokens=body.max_tokens or 100,
        )
    except Exception as e:
        raise _upstream_error("Chat completion", e)
    message = response.choices[0].message
    return {"data": message.model_dump() if hasattr(message, "model_dump") else message}


# Conversation

@router.post("/chat/openai", tags=["chat"], response_model=ChatResponse, response_model_by_alias=True)
async def chat(body: ChatRequest, session: HostSession = Depends(get_session)):
    """Run one conversation turn with MCP context and tools"""
    previous_response_id = None
    if body.conversation:
        previous_response_id = body.previous_response_id or session.continuation_token

    try:
        result = await session.orchestrator.handle_message(
            body.message,
            model=body.model or session.model,
            prompt_name=body.prompt_name,
            prompt_args=body.prompt_args,
            selected_resources=[ResourceSelection(r.uri, r.use_cached) for r in body.selected_resources],
            selected_templates=[TemplateSelection(t.uri, t.args) for t in body.selected_templates],
            tool_required=body.tool_required,
            previous_response_id=previous_response_id,
        )
    except Exception as e:
        raise _upstream_error("Chat turn", e)

    if body.conversation:
        session.continuation_token = result.response_id
    return ChatResponse(reply=result.reply, tool_calls=result.tool_calls, response_id=result.response_id)


@router.post("/chat/reset", tags=["chat"])
async def reset_chat(session: HostSession = Depends(get_session)):
    session.reset()
    return {"success": True}


# Tools

@router.get("/tools", tags=["tools"])
async def list_tools(session: HostSession = Depends(get_session)):
    return {"tools": await session.client.current_tools()}


@router.post("/tools/config", tags=["tools"])
async def configure_tool(body: ToolConfigRequest, session: HostSession = Depends(get_session)):
    tool = session.client.set_tool_enabled(body.name, body.enabled)
    if tool is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tool not found")
    return {"tool": tool}


# Roots

@router.get("/roots", tags=["roots"])
async def list_roots(session: HostSession = Depends(get_session)):
    return {"roots": session.client.roots.list()}


@router.post("/roots", tags=["roots"])
async def add_root(body: RootRequest, session: HostSession = Depends(get_session)):
    try:
        roots = await session.client.add_root(body.name, body.uri)
    except RootExistsError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"roots": roots}


@router.delete("/roots", tags=["roots"])
async def remove_root(body: RootDeleteRequest, session: HostSession = Depends(get_session)):
    roots = await session.client.remove_root(body.name)
    if roots is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Root not found")
    return {"roots": roots}


# Tasks and sampling

@router.get("/tasks", tags=["tasks"])
async def list_tasks(session: HostSession = Depends(get_session)):
    return {"tasks": session.tasks.list()}


@router.post("/tasks/cancel", tags=["tasks"])
async def cancel_task(body: TaskCancelRequest, session: HostSession = Depends(get_session)):
    if not session.tasks.cancel(body.token, body.reason):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return {"success": True, "token": body.token}


@router.post("/sampling/decision", tags=["sampling"])
async def sampling_decision(body: SamplingDecisionRequest, session: HostSession = Depends(get_session)):
    if not session.decisions.resolve(str(body.id), body.approved):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sampling request with that id.")
    return {"success": True}


# Capabilities

@router.get("/mcp_info", tags=["mcp"])
async def mcp_info(session: HostSession = Depends(get_session)) -> Dict[str, Any]:
    return session.client.server_info()


@router.get("/resources/list", tags=["mcp"])
async def list_resources(session: HostSession = Depends(get_session)):
    resources = session.client.cache.resources()
    return {"resources": [r.model_dump(mode="json", exclude_none=True) for r in resources]}


@router.post("/resources/read", tags=["mcp"])
async def read_resource(body: ResourceReadRequest, session: HostSession = Depends(get_session)):
    client = session.client
    try:
        content = await (client.read_cached(body.uri) if body.use_cached else client.refresh(body.uri))
    except MCPClientError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except Exception as e:
        raise _upstream_error(f"Reading resource {body.uri}", e)
    return {"content": content}


@router.get("/templates/list", tags=["mcp"])
async def list_templates(session: HostSession = Depends(get_session)):
    templates = session.client.cache.templates()
    return {"templates": [t.model_dump(mode="json", exclude_none=True) for t in templates]}


@router.post("/templates/read", tags=["mcp"])
async def read_template(body: TemplateReadRequest, session: HostSession = Depends(get_session)):
    try:
        content = await session.client.read_template(body.uri, body.args)
    except MCPClientError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except Exception as e:
        raise _upstream_error(f"Reading template {body.uri}", e)
    return {"content": content}


@router.get("/prompts/list", tags=["mcp"])
async def list_prompts(session: HostSession = Depends(get_session)):
    prompts = await session.client.current_prompts()
    return {"prompts": [p.model_dump(mode="json", exclude_none=True) for p in prompts]}


@router.post("/prompts/get", tags=["mcp"])
async def get_prompt(body: PromptGetRequest, session: HostSession = Depends(get_session)):
    try:
        prompt = await session.client.get_prompt(body.name, body.args)
    except MCPClientError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except Exception as e:
        raise _upstream_error(f"Fetching prompt {body.name}", e)
    return {"prompt": prompt}


# Live updates

@router.get("/updates", tags=["updates"])
async def updates(session: HostSession = Depends(get_session)):
    """Server-Sent Events stream of host updates"""
    queue = session.broadcaster.subscribe()
    return StreamingResponse(
        session.broadcaster.stream(queue),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
