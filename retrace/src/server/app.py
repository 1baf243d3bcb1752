"""
Orchestration server

HTTP endpoints for the workflow store plus the ``/ws`` turn exchange.
Each websocket connection owns one OrchestrationSession.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.datastructures import UploadFile

from retrace.src.errors import PersistenceError
from retrace.src.server.decision import DecisionEngine, LLMDecisionEngine
from retrace.src.server.session import OrchestrationSession
from retrace.src.server.storage import TRACE_SUFFIX, Foundation, WorkflowStore
from retrace.src.utils.config import ServerConfig

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_uploads(items: List[object]) -> List[Tuple[str, bytes]]:
    files: List[Tuple[str, bytes]] = []
    for item in items:
        if isinstance(item, UploadFile):
            files.append((item.filename or "", await item.read()))
    return files


def create_app(
    config: Optional[ServerConfig] = None,
    decision_engine: Optional[DecisionEngine] = None,
    store: Optional[WorkflowStore] = None,
) -> FastAPI:
    config = config or ServerConfig()
    engine = decision_engine or LLMDecisionEngine()
    store = store or WorkflowStore(Path(config.storage_dir))

    app = FastAPI(title="Retrace Orchestration Server", description="Guided replay of recorded workflows")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.decision_engine = engine

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Server is running!"

    @app.post("/upload")
    async def upload(request: Request):
        form = await request.form()
        traces = await _read_uploads(form.getlist("file"))
        screenshots = await _read_uploads(form.getlist("screenshots"))

        if not traces:
            return _error("No file uploaded or invalid format", 400)
        if len(traces) > 1:
            return _error(f"Exactly one structural trace ({TRACE_SUFFIX}) is allowed per workflow", 400)

        try:
            workflow = await asyncio.to_thread(store.create_workflow, traces[0], screenshots)
        except ValueError as exc:
            return _error(str(exc), 400)
        except PersistenceError as exc:
            logger.error("[Server] Upload error: %s", exc)
            return _error("Upload failed", 500)

        return {
            "message": f"Successfully uploaded {len(workflow.files)} files to workflow {workflow.id}",
            "workflowId": workflow.id,
            "files": list(workflow.files),
        }

    @app.get("/files")
    async def list_files():
        try:
            workflows = await asyncio.to_thread(store.list_workflows)
        except PersistenceError as exc:
            logger.error("[Server] List files error: %s", exc)
            return _error("Failed to list files", 500)
        return {"workflows": [workflow.to_dict() for workflow in workflows]}

    @app.get("/files/{workflow_id}/{filename}")
    async def get_file(workflow_id: str, filename: str):
        try:
            path = store.resolve_file(workflow_id, filename)
        except ValueError:
            return _error("Invalid path", 400)
        except FileNotFoundError:
            return _error("File not found", 404)
        return FileResponse(path)

    async def load_foundation(workflow_id: str) -> Foundation:
        return await asyncio.to_thread(store.load_foundation, workflow_id)

    @app.websocket("/ws")
    async def turn_exchange(websocket: WebSocket) -> None:
        await websocket.accept()
        session = OrchestrationSession(engine, load_foundation, require_trace=config.require_trace)
        logger.info("[Server] Client connected")
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                try:
                    reply = await session.handle(raw)
                except Exception:
                    logger.exception("[Server] WebSocket error")
                    await websocket.send_json({"error": "Internal server error"})
                    continue
                await websocket.send_json(reply.payload)
                if reply.close:
                    await websocket.close()
                    break
        except WebSocketDisconnect:
            pass
        finally:
            session.close()
            logger.info("[Server] Client disconnected")

    return app


def main() -> None:
    import uvicorn

    config = ServerConfig()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
