import asyncio
import json
import logging
import time
from typing import Any, Dict, Literal, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .config import Settings, load_settings, vault_root
from .controller import SessionController, ToolCard
from .events import SessionStatus
from .runner import ClaudeProcessRunner, ProcessRunner

logger = logging.getLogger(__name__)


# --- Pydantic Models ---
class ClientMessage(BaseModel):
    type: Literal["run", "cancel", "toggle"]
    prompt: Optional[str] = None
    current_file: Optional[str] = None
    id: Optional[str] = None
# ---------------------


class WebSocketSink:
    """Queues sink calls as JSON-ready messages for one WebSocket."""

    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

    def send(self, event_type: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"type": event_type, "timestamp": time.time()}
        payload.update(fields)
        self.queue.put_nowait(payload)

    def close(self) -> None:
        self.queue.put_nowait(None)

    def clear(self) -> None:
        self.send("clear")

    def append_text(self, text: str, new_block: bool) -> None:
        self.send("text", content=text, new_block=new_block)

    def open_tool_card(self, card: ToolCard) -> str:
        self.send(
            "tool_card",
            id=card.id,
            name=card.name,
            label=card.header_label,
            input=card.input_text,
            result=card.result_text,
        )
        return card.id

    def update_tool_result(self, tool_use_id: str, display_text: str) -> None:
        self.send("tool_result", id=tool_use_id, content=display_text)

    def show_error(self, message: str) -> None:
        self.send("error", content=message)

    def set_status(self, status: SessionStatus, summary: str) -> None:
        self.send("status", status=status.value, content=summary)


async def _pump(websocket: WebSocket, queue: "asyncio.Queue[Optional[Dict[str, Any]]]") -> None:
    while True:
        payload = await queue.get()
        if payload is None:
            return
        await websocket.send_text(json.dumps(payload))


def create_app(
    runner: Optional[ProcessRunner] = None,
    settings: Optional[Settings] = None,
    cwd: Optional[str] = None,
) -> FastAPI:
    runner = runner or ClaudeProcessRunner()
    settings = settings or load_settings()
    cwd = cwd or vault_root()

    app = FastAPI(title="Claudian", description="Watch a coding agent work", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost",
            "http://localhost:8000",
            "http://127.0.0.1",
            "http://127.0.0.1:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.runner = runner
    app.state.settings = settings
    app.state.cwd = cwd

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "claudian"}

    @app.get("/settings")
    async def get_settings():
        return {"cwd": app.state.cwd, **app.state.settings.as_dict()}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        sink = WebSocketSink()
        closing = []
        controller = SessionController(
            runner=app.state.runner,
            sink=sink,
            cwd=app.state.cwd,
            settings=app.state.settings,
            on_close=lambda: closing.append(True),
        )
        sender = asyncio.ensure_future(_pump(websocket, sink.queue))
        logger.info("Client connected, working directory %s", app.state.cwd)
        try:
            while not closing:
                raw = await websocket.receive_text()
                try:
                    message = ClientMessage.model_validate_json(raw)
                except ValidationError as exc:
                    sink.send("invalid", content=str(exc))
                    continue

                if message.type == "run":
                    if message.current_file is not None:
                        controller.set_current_file(message.current_file or None)
                    if not controller.start(message.prompt or ""):
                        sink.send("rejected", status=controller.status.value)
                elif message.type == "cancel":
                    controller.cancel()
                elif message.type == "toggle":
                    card = controller.toggle_card(message.id or "")
                    if card is not None:
                        sink.send("tool_card_expanded", id=card.id, expanded=card.is_expanded)
        except WebSocketDisconnect:
            logger.info("Client disconnected")
        finally:
            controller.dispose()
            if not closing:
                sender.cancel()

        if closing:
            sink.send("closed")
            sink.close()
            await sender
            await websocket.close()

    return app


def main(host: str = "127.0.0.1", port: int = 8000, log_level: str = "info") -> None:
    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)
