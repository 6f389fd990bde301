"""Web 接口：REST + WebSocket"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError

from .analysis import decode_image, to_data_url
from .config import AgentConfig
from .errors import AgentError, ConfigError
from .events import ACTIVITY, ERROR, SCREENSHOT, STEP_PROGRESS, TASK_ANALYSIS, TASK_COMPLETE, TaskEvent
from .manager import TaskManager

logger = logging.getLogger(__name__)

# AgentError.code -> HTTP 状态码
STATUS_CODES = {
    "quota_exceeded": 429,
    "config_error": 503,
    "task_not_found": 404,
    "invalid_options": 422,
    "observation_unavailable": 409,
    "analysis_failed": 502,
}

# 任务事件在聊天协议中的名字
CHAT_EVENTS = {
    ACTIVITY: "activityUpdate",
    STEP_PROGRESS: "taskProgress",
    TASK_COMPLETE: "taskComplete",
    TASK_ANALYSIS: "taskAnalysis",
    ERROR: "error",
    SCREENSHOT: "screenshot",
}

# 收到这些事件后，这个任务不会再有新事件
TERMINAL_EVENTS = (TASK_ANALYSIS, ERROR)


class TaskOptions(BaseModel):
    max_steps: Optional[int] = Field(None, ge=1, le=100)
    confidence_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class StartTaskRequest(BaseModel):
    description: str = Field(..., min_length=1, description="自然语言任务描述")
    options: TaskOptions = Field(default_factory=TaskOptions)


class AnalyzeTextRequest(BaseModel):
    text: str = Field(..., min_length=1)
    task: str = ""


class AnalyzeImageRequest(BaseModel):
    image: str = Field(..., min_length=1, description="data URL 或 base64 编码的 JPEG")


class AnalyzePageRequest(BaseModel):
    instruction: Optional[str] = None


# 聊天协议的入站消息
class StartTaskMessage(BaseModel):
    taskDescription: str = Field(..., min_length=1)
    options: TaskOptions = Field(default_factory=TaskOptions)


class TaskMessage(BaseModel):
    taskId: str = Field(..., min_length=1)


class AnalyzePageMessage(TaskMessage):
    instruction: Optional[str] = None


class AnalyzeImageMessage(BaseModel):
    image: str = Field(..., min_length=1)


CHAT_MESSAGES = {
    "startAutonomousTask": StartTaskMessage,
    "stopTask": TaskMessage,
    "takeScreenshot": TaskMessage,
    "analyzePage": AnalyzePageMessage,
    "analyzeImage": AnalyzeImageMessage,
}


class TaskHandleResponse(BaseModel):
    task_id: str
    description: str
    options: Dict[str, Any]
    state: str
    done: bool
    stop_requested: bool
    steps_completed: int
    created_at: int
    finished_at: Optional[int] = None
    replay_url: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None


def get_manager(request: Request) -> TaskManager:
    manager = request.app.state.manager
    if manager is None:
        raise HTTPException(status_code=503, detail=request.app.state.config_error or "Agent not configured")
    return manager


def create_app(manager: Optional[TaskManager] = None, config: Optional[AgentConfig] = None) -> FastAPI:
    """manager 为空时在启动阶段按环境变量构造；配置缺失时服务照常启动，任务接口返回 503"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.manager is None:
            try:
                app.state.manager = TaskManager.from_config(config or AgentConfig.from_env())
                logger.info("✓ Dyna agent 已就绪")
            except ConfigError as e:
                app.state.config_error = str(e)
                logger.error(f"❌ 配置错误: {e}")
        yield
        if app.state.manager is not None:
            await app.state.manager.shutdown()

    app = FastAPI(title="Dyna AI Browser Agent", lifespan=lifespan)
    app.state.manager = manager
    app.state.config_error = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AgentError)
    async def agent_error_handler(request: Request, exc: AgentError):
        status_code = STATUS_CODES.get(exc.code, 500)
        content: Dict[str, Any] = {"code": exc.code, "detail": str(exc)}
        reset_at = getattr(exc, "reset_at", None)
        if reset_at is not None:
            content["reset_at"] = reset_at
        return JSONResponse(status_code=status_code, content=content)

    @app.get("/health", summary="Health check")
    async def health(request: Request) -> Dict[str, Any]:
        manager = request.app.state.manager
        data: Dict[str, Any] = {"status": "healthy", "configured": manager is not None}
        if manager is not None:
            data["tasks"] = len(manager.list())
            limiter = getattr(manager.model, "rate_limiter", None)
            if limiter is not None:
                data["ai_calls_remaining"] = limiter.remaining
        return data

    @app.post("/api/tasks", response_model=TaskHandleResponse, status_code=202)
    async def start_task(body: StartTaskRequest, manager: TaskManager = Depends(get_manager)):
        handle = await manager.start_task(body.description, body.options.model_dump(exclude_none=True))
        return handle.to_dict()

    @app.get("/api/tasks", response_model=List[TaskHandleResponse])
    async def list_tasks(manager: TaskManager = Depends(get_manager)):
        return [handle.to_dict() for handle in manager.list()]

    @app.get("/api/tasks/{task_id}", response_model=TaskHandleResponse)
    async def get_task(task_id: str, manager: TaskManager = Depends(get_manager)):
        return manager.get(task_id).to_dict()

    @app.post("/api/tasks/{task_id}/stop", response_model=TaskHandleResponse)
    async def stop_task(task_id: str, manager: TaskManager = Depends(get_manager)):
        return manager.stop_task(task_id).to_dict()

    @app.get("/api/tasks/{task_id}/screenshot", response_class=Response)
    async def task_screenshot(task_id: str, manager: TaskManager = Depends(get_manager)):
        """任务最近一次观察到的页面截图"""
        observation = manager.latest_observation(task_id)
        return Response(content=observation.screenshot, media_type="image/jpeg")

    @app.post("/api/tasks/{task_id}/analyze")
    async def analyze_task_page(
        task_id: str, body: AnalyzePageRequest, manager: TaskManager = Depends(get_manager)
    ) -> Dict[str, Any]:
        observation = manager.latest_observation(task_id)
        return await manager.analyst.analyze_page(observation, body.instruction)

    @app.post("/api/analyze-text")
    async def analyze_text(body: AnalyzeTextRequest, manager: TaskManager = Depends(get_manager)) -> Dict[str, Any]:
        result = await manager.analyst.analyze_text(body.text, body.task)
        return {"success": True, **result}

    @app.post("/api/analyze-image")
    async def analyze_image(body: AnalyzeImageRequest, manager: TaskManager = Depends(get_manager)) -> Dict[str, Any]:
        return await manager.analyst.analyze_image(decode_image(body.image))

    @app.websocket("/ws/tasks/{task_id}")
    async def task_events(websocket: WebSocket, task_id: str):
        """推送单个任务的事件流，任务结束后关闭连接"""
        await websocket.accept()
        manager = websocket.app.state.manager
        if manager is None or task_id not in {h.task_id for h in manager.list()}:
            await websocket.send_json({"type": ERROR, "task_id": task_id, "code": "task_not_found"})
            await websocket.close(code=1008)
            return

        queue = manager.events.subscribe(task_id)
        try:
            while True:
                event: TaskEvent = await queue.get()
                await websocket.send_json(event.to_dict())
                if event.type in TERMINAL_EVENTS:
                    break
            await websocket.close()
        except WebSocketDisconnect:
            logger.info(f"WebSocket 客户端断开 [{task_id}]")
        finally:
            manager.events.unsubscribe(queue, task_id)

    @app.websocket("/ws")
    async def chat(websocket: WebSocket):
        """
        聊天协议：
          -> {"type": "startAutonomousTask", "taskDescription": "...", "options": {...}}
          -> {"type": "stopTask", "taskId": "..."}
          -> {"type": "takeScreenshot", "taskId": "..."}
          -> {"type": "analyzePage", "taskId": "...", "instruction": "..."}
          -> {"type": "analyzeImage", "image": "data:image/jpeg;base64,..."}
          <- {"event": "taskStarted" | "taskProgress" | "screenshot" | "activityUpdate" | ..., "data": {...}}
        """
        await websocket.accept()
        manager = websocket.app.state.manager
        forwarders: Dict[str, asyncio.Task] = {}

        async def send(event: str, **data: Any) -> None:
            await websocket.send_json({"event": event, "data": data})

        async def forward(task_id: str) -> None:
            queue = manager.events.subscribe(task_id)
            try:
                while True:
                    event: TaskEvent = await queue.get()
                    await websocket.send_json({"event": CHAT_EVENTS.get(event.type, event.type), "data": event.to_dict()})
                    if event.type in TERMINAL_EVENTS:
                        break
            finally:
                manager.events.unsubscribe(queue, task_id)

        async def dispatch(message_type: str, message: Any) -> None:
            if message_type == "startAutonomousTask":
                handle = await manager.start_task(
                    message.taskDescription, message.options.model_dump(exclude_none=True)
                )
                await send("taskStarted", **handle.to_dict())
                forwarders[handle.task_id] = asyncio.create_task(forward(handle.task_id))
            elif message_type == "stopTask":
                handle = manager.stop_task(message.taskId)
                await send("taskStopping", task_id=handle.task_id)
            elif message_type == "takeScreenshot":
                observation = manager.latest_observation(message.taskId)
                await send(
                    "screenshot", task_id=message.taskId, url=observation.url, image=to_data_url(observation.screenshot)
                )
            elif message_type == "analyzePage":
                observation = manager.latest_observation(message.taskId)
                result = await manager.analyst.analyze_page(observation, message.instruction)
                await send("analysisResult", task_id=message.taskId, **result)
            elif message_type == "analyzeImage":
                result = await manager.analyst.analyze_image(decode_image(message.image))
                await send("imageAnalysis", **result)

        try:
            while True:
                raw = await websocket.receive_text()

                if manager is None:
                    await send("error", code="config_error", message=websocket.app.state.config_error)
                    continue

                try:
                    message = json.loads(raw)
                except ValueError:
                    await send("error", code="invalid_message", message="Message is not valid JSON")
                    continue

                message_type = message.get("type") if isinstance(message, dict) else None
                schema = CHAT_MESSAGES.get(message_type) if isinstance(message_type, str) else None
                if schema is None:
                    await send("error", code="unknown_message", message=f"Unknown message type: {message_type}")
                    continue

                try:
                    await dispatch(message_type, schema.model_validate(message))
                except ValidationError as e:
                    await send("error", code="invalid_options", message=str(e))
                except AgentError as e:
                    await send("error", code=e.code, message=str(e))
        except WebSocketDisconnect:
            logger.info("WebSocket 聊天客户端断开")
        finally:
            for forwarder in forwarders.values():
                forwarder.cancel()

    return app
