"""FastAPI server exposing streaming generation, sessions, uploads, and models."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, validator
import uvicorn

from common.errors import GatewayError, InvalidRequestError, NotFoundError
from common.utils import setup_logging
from document_module import DocumentCache
from inference_module import EngineConfig, GenerationConfig, ModelDispatcher, ModelIdentity, build_engine
from inference_module.engines import InferenceEngine
from session_module import ChatMessage, SessionConfig, SessionStore
from streaming_module import GatewayConfig, StreamingConfig, StreamingPipeline

logger = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


# ---------- Request Models ----------
class GenerateRequest(BaseModel):
    model_name: str = Field(..., description="Canonical model name or a known alias.")
    prompt: str = Field(..., description="User message to send to the model.")
    session_id: Optional[str] = Field(None, description="Existing session to continue; a new one is created if omitted.")
    max_new_tokens: Optional[int] = Field(None, gt=0)
    temperature: Optional[float] = Field(None, ge=0)
    top_p: Optional[float] = Field(None, gt=0, le=1)
    seed: Optional[int] = None

    @validator("model_name", "prompt")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value


class SyncMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = ""


class SyncRequest(BaseModel):
    session_id: str
    messages: List[SyncMessage] = Field(default_factory=list)

    @validator("session_id")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value


class SwitchModelRequest(BaseModel):
    name: str


# ---------- FastAPI Factory ----------
def create_app(
    config: Optional[GatewayConfig] = None,
    *,
    engine: Optional[InferenceEngine] = None,
    log_dir: Optional[str] = None,
) -> FastAPI:
    setup_logging(log_dir, logging.INFO)
    config = config or GatewayConfig()

    default_model = ModelIdentity.parse(config.default_model)
    engine = engine or build_engine(config.engine)
    dispatcher = ModelDispatcher(
        engine,
        default_generation=config.generation.validate(),
        initial_model=default_model,
    )
    sessions = SessionStore()
    documents = DocumentCache()
    pipeline = StreamingPipeline(
        sessions,
        documents,
        dispatcher,
        session_config=config.session,
        streaming_config=config.streaming,
    )

    if config.preload_model:
        try:
            dispatcher.switch_model(default_model)
        except GatewayError as exc:
            logger.error("Starting without a loaded model: %s", exc)

    app = FastAPI(title="LLM Gateway", version="0.1.0")
    app.state.config = config
    app.state.sessions = sessions
    app.state.documents = documents
    app.state.dispatcher = dispatcher
    app.state.pipeline = pipeline

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        logger.info("%s %s failed with %d: %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = InvalidRequestError("Malformed request body", detail=_validation_errors(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.on_event("shutdown")
    def shutdown() -> None:
        logger.info("Shutting down generation workers")
        pipeline.shutdown(wait=False)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok" if dispatcher.is_loaded else "model_not_loaded",
            "current_model": dispatcher.current_model().canonical_name,
            "available_models": ModelIdentity.available_models(),
        }

    @app.post("/generate/stream")
    async def generate_stream(request: GenerateRequest):
        logger.info("Streaming request for model %s (session_id=%s)", request.model_name, request.session_id)
        run = await pipeline.prepare(
            request.model_name,
            request.prompt,
            request.session_id,
            _generation_config(dispatcher, request),
        )
        return StreamingResponse(pipeline.stream(run), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/generate")
    async def generate(request: GenerateRequest) -> Dict[str, Any]:
        logger.info("Generation request for model %s (session_id=%s)", request.model_name, request.session_id)
        try:
            run, result = await pipeline.generate(
                request.model_name,
                request.prompt,
                request.session_id,
                _generation_config(dispatcher, request),
            )
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Generation request failed (session_id=%s)", request.session_id)
            raise HTTPException(status_code=500, detail="Generation request failed") from exc

        return {
            "text": result.text,
            "session_id": run.session_id,
            "tokens_generated": result.tokens_generated,
            "generation_time_secs": result.generation_time_secs,
            "model_used": result.model_used,
        }

    @app.post("/upload")
    async def upload(file: UploadFile = File(...)) -> Dict[str, Any]:
        filename = file.filename or ""
        data = await file.read()
        logger.info("Received upload %s (%d bytes)", filename, len(data))
        try:
            result = await run_in_threadpool(documents.upload, filename, data)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Upload of %s failed", filename)
            raise HTTPException(status_code=500, detail="Upload failed") from exc
        return result.to_dict()

    @app.get("/files")
    async def list_files() -> Dict[str, Any]:
        return {"files": documents.pending_files()}

    @app.delete("/files/{file_id}")
    async def delete_file(file_id: str) -> Dict[str, Any]:
        if not documents.remove(file_id):
            raise NotFoundError(f"File {file_id} not found", file_id=file_id)
        return {"file_id": file_id, "result": True}

    @app.get("/sessions")
    async def list_sessions() -> Dict[str, Any]:
        return {"sessions": sessions.list_sessions()}

    @app.post("/sessions/sync")
    async def sync_session(request: SyncRequest) -> Dict[str, Any]:
        messages = [ChatMessage.from_dict(m.dict()) for m in request.messages]
        session = sessions.sync(request.session_id, messages, config.session)
        return {"session_id": session.id, "synced": True, "message_count": len(session.messages)}

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        session = sessions.get(session_id)
        if session is None:
            return {"session_id": session_id, "messages": [], "exists": False}
        return {"session_id": session_id, "messages": session.message_dicts(), "exists": True}

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> Dict[str, Any]:
        if not sessions.remove(session_id):
            raise NotFoundError(f"Session {session_id} not found", session_id=session_id)
        return {"session_id": session_id, "cleared": True}

    @app.post("/sessions/{session_id}/clear")
    async def clear_session(session_id: str) -> Dict[str, Any]:
        if not sessions.clear_history(session_id):
            raise NotFoundError(f"Session {session_id} not found", session_id=session_id)
        return {"session_id": session_id, "cleared": True}

    @app.get("/models")
    async def list_models() -> Dict[str, Any]:
        return {
            "models": [info.to_dict() for info in dispatcher.list_models()],
            "current_model": dispatcher.current_model().canonical_name,
        }

    @app.post("/models/switch")
    async def switch_model(request: SwitchModelRequest) -> Dict[str, Any]:
        target = ModelIdentity.parse(request.name)
        logger.info("Model switch requested: %s", target)
        await run_in_threadpool(dispatcher.switch_model, target)
        return {
            "success": True,
            "message": f"Switched to {target}",
            "current_model": dispatcher.current_model().canonical_name,
        }

    return app


# ---------- CLI ----------
def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the streaming LLM gateway.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind.")
    parser.add_argument("--log_dir", default="./logs", help="Directory for application logs.")
    parser.add_argument("--engine", default="llama_cpp", choices=["llama_cpp", "remote", "demo"], help="Inference backend.")
    parser.add_argument("--model_dir", default="./models", help="Directory holding GGUF weights (llama_cpp).")
    parser.add_argument("--n_threads", type=int, default=4, help="CPU threads for llama.cpp.")
    parser.add_argument("--llm_endpoint", default="http://localhost:8000/v1/chat/completions", help="Chat completions endpoint (remote).")
    parser.add_argument("--models_endpoint", default=None, help="Model listing endpoint checked on load (remote).")
    parser.add_argument("--request_timeout", type=int, default=60, help="Timeout for remote LLM calls (seconds).")
    parser.add_argument("--default_model", default=ModelIdentity.default().canonical_name, help="Model loaded at startup.")
    parser.add_argument("--max_turns", type=int, default=10, help="Conversation turns kept per session.")
    parser.add_argument("--system_prompt", default=None, help="System prompt seeded into new sessions.")
    parser.add_argument("--keepalive_seconds", type=float, default=15.0, help="Interval between SSE keep-alive frames.")
    parser.add_argument("--channel_capacity", type=int, default=32, help="Tokens buffered between worker and client.")
    parser.add_argument("--worker_threads", type=int, default=2, help="Threads running generation workers.")
    parser.add_argument("--no_preload", action="store_true", help="Do not load the default model at startup.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = GatewayConfig(
        engine=EngineConfig(
            backend=args.engine,
            model_dir=args.model_dir,
            n_threads=args.n_threads,
            endpoint=args.llm_endpoint,
            models_endpoint=args.models_endpoint,
            request_timeout=args.request_timeout,
        ),
        session=SessionConfig(max_turns=args.max_turns, system_prompt=args.system_prompt),
        streaming=StreamingConfig(
            channel_capacity=args.channel_capacity,
            keepalive_seconds=args.keepalive_seconds,
            worker_threads=args.worker_threads,
        ),
        generation=GenerationConfig(),
        default_model=args.default_model,
        preload_model=not args.no_preload,
    )

    app = create_app(config, log_dir=args.log_dir)
    logger.info("Starting LLM gateway on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


# ---------- Utilities ----------
def _generation_config(dispatcher: ModelDispatcher, request: GenerateRequest) -> GenerationConfig:
    return dispatcher.default_generation.with_overrides(
        max_new_tokens=request.max_new_tokens,
        temperature=request.temperature,
        top_p=request.top_p,
        seed=request.seed,
    )


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


if __name__ == "__main__":
    main()
