"""HTTP 控制接口 - 把编辑器命令暴露为 localhost API"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException
from pydantic import BaseModel

if TYPE_CHECKING:
    from fastapi import FastAPI

    from ..terminal import TerminalService

logger = logging.getLogger(__name__)


class TerminalRequest(BaseModel):
    """终端命令请求体"""

    overrides: dict[str, Any] = {}  # 单次调用的配置覆盖
    cmd_args: str | None = None  # 追加到 agent 命令的参数


class SessionInfo(BaseModel):
    id: str
    name: str
    created_at: float
    surface_id: str | None = None
    job_id: str | None = None
    active: bool = False


class SessionListResponse(BaseModel):
    active_session_id: str | None
    sessions: list[SessionInfo]


class ActionResponse(BaseModel):
    """通用响应"""

    success: bool
    message: str = ""
    session_id: str | None = None


class MentionRequest(BaseModel):
    file_path: str
    line_start: int | None = None
    line_end: int | None = None
    overrides: dict[str, Any] = {}


class ConnectionRequest(BaseModel):
    connected: bool


class DismissRequest(BaseModel):
    surface_id: str | None = None


class CleanupResponse(BaseModel):
    strategy: str
    targets: list[str]
    signalled: int
    stopped: int


class TerminalAction(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    SIMPLE_TOGGLE = "simple_toggle"
    FOCUS_TOGGLE = "focus_toggle"
    TOGGLE = "toggle"
    ENSURE_VISIBLE = "ensure_visible"


def setup_routes(app: "FastAPI", service: "TerminalService") -> None:
    """设置 API 路由"""

    def session_list() -> SessionListResponse:
        active = service.get_active_session_id()
        return SessionListResponse(
            active_session_id=active,
            sessions=[
                SessionInfo(
                    id=s.id,
                    name=s.name,
                    created_at=s.created_at,
                    surface_id=s.surface_id,
                    job_id=s.job_id,
                    active=s.id == active,
                )
                for s in service.list_sessions()
            ],
        )

    @app.get("/api/sessions", response_model=SessionListResponse)
    async def list_sessions():
        return session_list()

    @app.post("/api/sessions", response_model=ActionResponse)
    async def open_new_session(request: TerminalRequest):
        session_id = await service.open_new_session(request.overrides, request.cmd_args)
        if session_id is None:
            return ActionResponse(success=False, message="Failed to start terminal")
        return ActionResponse(success=True, message="Session opened", session_id=session_id)

    @app.delete("/api/sessions/{session_id}", response_model=ActionResponse)
    async def close_session(session_id: str):
        if service.sessions.get_session(session_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        await service.close_session(session_id)
        return ActionResponse(success=True, message="Session closed", session_id=session_id)

    @app.post("/api/sessions/{session_id}/switch", response_model=ActionResponse)
    async def switch_session(session_id: str):
        if not await service.switch_to_session(session_id):
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return ActionResponse(success=True, message="Switched", session_id=session_id)

    @app.post("/api/terminal/{action}", response_model=ActionResponse)
    async def terminal_action(action: TerminalAction, request: TerminalRequest | None = None):
        request = request or TerminalRequest()
        logger.debug(f"[API] Terminal action: {action.value}")
        if action == TerminalAction.CLOSE:
            result = await service.close()
        else:
            result = await getattr(service, action.value)(request.overrides, request.cmd_args)
        # 只有 open 报告启动结果，其余动作返回 None
        return ActionResponse(
            success=result is not False,
            message=action.value,
            session_id=service.get_active_session_id(),
        )

    @app.post("/api/cleanup", response_model=CleanupResponse)
    async def cleanup():
        report = await service.cleanup_all()
        return CleanupResponse(
            strategy=report.strategy,
            targets=[t.job_id for t in report.targets],
            signalled=report.signalled,
            stopped=report.stopped,
        )

    @app.post("/api/mentions", response_model=ActionResponse)
    async def send_mention(request: MentionRequest):
        await service.send_at_mention(request.file_path, request.line_start, request.line_end, request.overrides)
        return ActionResponse(success=True, message="Mention queued")

    @app.post("/api/connection", response_model=ActionResponse)
    async def set_connection(request: ConnectionRequest):
        service.set_connected(request.connected)
        return ActionResponse(success=True, message="connected" if request.connected else "disconnected")

    @app.post("/api/keys/dismiss", response_model=ActionResponse)
    async def dismiss_key(request: DismissRequest):
        result = await service.dismiss_key(request.surface_id)
        if result is None:
            return ActionResponse(success=False, message="No active terminal")
        return ActionResponse(success=True, message=result)

    @app.get("/api/debug")
    async def debug_snapshot():
        return service.debug_snapshot()
