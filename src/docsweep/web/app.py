from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Iterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from docsweep.application.services.batch_guard import BatchGuard
from docsweep.application.services.batch_service import CleaningBatchProcessor
from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.application.services.progress_channel import ProgressChannel
from docsweep.application.services.project_service import ProjectService
from docsweep.application.services.search_service import SimilaritySearchService
from docsweep.application.services.vector_service import VectorIndexService
from docsweep.core.config import AppPaths, Settings, load_settings
from docsweep.core.errors import (
    AlreadyRunningError,
    DimensionMismatchError,
    DocsweepError,
    InvalidTransitionError,
    ModelNotFoundError,
    NotFoundError,
    ProviderUnavailableError,
    ValidationError,
)
from docsweep.domain.models.cleaning import TASK_TYPE_TEXT_CLEANUP, CleaningTask, CleaningTaskUpdate
from docsweep.domain.models.progress import (
    CLEANING_PROGRESS_CHANNEL,
    EVENT_COMPLETED,
    VECTOR_INDEXING_PROGRESS_CHANNEL,
)
from docsweep.domain.models.vector import NewVectorEntry, VectorIndexEntry
from docsweep.infrastructure.archive.output_store import CleaningOutputStore
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.repos.vector_index_repo import VectorIndexRepo
from docsweep.infrastructure.db.sqlite import schema_version
from docsweep.infrastructure.embedding import build_gateway
from docsweep.infrastructure.vector.chunking import TextChunker


class CreateTaskRequest(BaseModel):
    file_id: str
    task_type: str
    priority: int = 0
    input_content: str | None = None


class EnqueueFileRequest(BaseModel):
    file_id: str
    content: str


class UpdateTaskRequest(BaseModel):
    status: str | None = None
    output_content: str | None = None
    error_message: str | None = None


class BatchRunRequest(BaseModel):
    index_outputs: bool = False
    model: str | None = None
    save_outputs: bool = True


class InsertVectorRequest(BaseModel):
    content_id: str
    content_type: str
    content: str = ""
    embedding_vector: list[float]
    model_name: str
    chunk_index: int = 0
    metadata: str | None = None


class IndexContentRequest(BaseModel):
    content_id: str
    content_type: str = "document"
    text: str
    model: str | None = None


class IndexCompletedRequest(BaseModel):
    task_type: str = TASK_TYPE_TEXT_CLEANUP
    model: str | None = None


class SearchRequest(BaseModel):
    query: str
    limit: int = 10
    threshold: float | None = None
    model: str | None = None


class EmbedRequest(BaseModel):
    text: str
    model: str | None = None


# Most specific classes first.
_ERROR_STATUS: list[tuple[type[DocsweepError], int]] = [
    (NotFoundError, 404),
    (ModelNotFoundError, 404),
    (InvalidTransitionError, 409),
    (AlreadyRunningError, 409),
    (DimensionMismatchError, 422),
    (ValidationError, 400),
    (ProviderUnavailableError, 503),
]


def _http_error(exc: DocsweepError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def _entry_payload(entry: VectorIndexEntry, *, include_vector: bool = False) -> dict[str, Any]:
    payload = asdict(entry)
    payload["dimension"] = entry.dimension
    if not include_vector:
        payload.pop("embedding_vector", None)
    return payload


def _sse_event(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=True)}\n\n"


def create_app(
    paths: AppPaths,
    *,
    settings: Settings | None = None,
    gateway: Any | None = None,
    transform: Callable[[CleaningTask], str] | None = None,
) -> FastAPI:
    app = FastAPI(title="docsweep", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app_settings = settings or load_settings()
    ProjectService(paths).init_project()

    guard = BatchGuard()
    channels = {
        CLEANING_PROGRESS_CHANNEL: ProgressChannel(CLEANING_PROGRESS_CHANNEL),
        VECTOR_INDEXING_PROGRESS_CHANNEL: ProgressChannel(VECTOR_INDEXING_PROGRESS_CHANNEL),
    }
    app.state.channels = channels
    app.state.batch_guard = guard
    gateway_cache: Any | None = gateway

    def get_gateway() -> Any:
        nonlocal gateway_cache
        if gateway_cache is None:
            gateway_cache = build_gateway(app_settings)
        return gateway_cache

    def get_task_service() -> CleaningTaskService:
        return CleaningTaskService(CleaningTaskRepo(paths.db_path))

    def get_vector_service(*, with_gateway: bool = False) -> VectorIndexService:
        return VectorIndexService(
            vector_repo=VectorIndexRepo(paths.db_path),
            gateway=get_gateway() if with_gateway else gateway_cache,
            chunker=TextChunker(max_chars=app_settings.chunk_chars),
            default_model=app_settings.embed_model,
            task_repo=CleaningTaskRepo(paths.db_path),
            guard=guard,
            channel=channels[VECTOR_INDEXING_PROGRESS_CHANNEL],
        )

    def get_search_service() -> SimilaritySearchService:
        return SimilaritySearchService(
            vector_repo=VectorIndexRepo(paths.db_path),
            gateway=get_gateway(),
            default_model=app_settings.embed_model,
            default_threshold=app_settings.search_threshold,
        )

    def get_batch_processor(req: BatchRunRequest) -> CleaningBatchProcessor:
        kwargs: dict[str, Any] = {}
        if transform is not None:
            kwargs["transform"] = transform
        return CleaningBatchProcessor(
            task_service=get_task_service(),
            guard=guard,
            channel=channels[CLEANING_PROGRESS_CHANNEL],
            vector_service=get_vector_service(with_gateway=True) if req.index_outputs else None,
            index_outputs=req.index_outputs,
            index_model=req.model,
            output_store=CleaningOutputStore(paths.output_dir) if req.save_outputs else None,
            **kwargs,
        )

    @app.get("/api/health")
    def api_health() -> dict[str, Any]:
        return {
            "ok": True,
            "db_path": str(paths.db_path),
            "schema_version": schema_version(paths.db_path),
            "embed_provider": app_settings.embed_provider,
            "embed_model": app_settings.embed_model,
            "batch_running": guard.is_running(),
        }

    @app.post("/api/tasks")
    def api_create_task(req: CreateTaskRequest) -> dict[str, Any]:
        try:
            task = get_task_service().create(
                req.file_id,
                req.task_type,
                priority=req.priority,
                input_content=req.input_content,
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "task": _jsonable(task)}

    @app.post("/api/tasks/enqueue-file")
    def api_enqueue_file(req: EnqueueFileRequest) -> dict[str, Any]:
        try:
            tasks = get_task_service().create_for_file(req.file_id, req.content)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "created": len(tasks), "tasks": _jsonable(tasks)}

    @app.get("/api/tasks")
    def api_list_tasks(
        status: str | None = None,
        task_type: str | None = None,
        query: str | None = None,
        page: int = Query(default=1),
        page_size: int = Query(default=50),
    ) -> dict[str, Any]:
        try:
            result = get_task_service().paginate(
                page,
                page_size,
                status=status,
                task_type=task_type,
                query=query,
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return _jsonable(result)

    @app.get("/api/tasks/stats")
    def api_task_stats() -> dict[str, Any]:
        return _jsonable(get_task_service().stats())

    @app.get("/api/tasks/{task_id}")
    def api_get_task(task_id: str) -> dict[str, Any]:
        try:
            return _jsonable(get_task_service().get(task_id))
        except DocsweepError as exc:
            raise _http_error(exc) from exc

    @app.patch("/api/tasks/{task_id}")
    def api_update_task(task_id: str, req: UpdateTaskRequest) -> dict[str, Any]:
        try:
            task = get_task_service().update(
                task_id,
                CleaningTaskUpdate(
                    status=req.status,
                    output_content=req.output_content,
                    error_message=req.error_message,
                ),
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "task": _jsonable(task)}

    @app.delete("/api/tasks/{task_id}")
    def api_delete_task(task_id: str) -> dict[str, Any]:
        try:
            get_task_service().delete(task_id)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "deleted": task_id}

    @app.delete("/api/tasks")
    def api_delete_all_tasks() -> dict[str, Any]:
        return {"ok": True, "removed": get_task_service().delete_all()}

    @app.post("/api/batch/run")
    def api_batch_run(req: BatchRunRequest | None = None) -> dict[str, Any]:
        try:
            attempted = get_batch_processor(req or BatchRunRequest()).run_pending()
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "attempted": attempted}

    @app.get("/api/batch/status")
    def api_batch_status() -> dict[str, Any]:
        return {"running": guard.is_running(), "active_batch": guard.active_batch}

    @app.get("/api/outputs")
    def api_list_outputs(task_type: str | None = None) -> dict[str, Any]:
        try:
            outputs = CleaningOutputStore(paths.output_dir).list_outputs(task_type)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"count": len(outputs), "outputs": _jsonable(outputs)}

    @app.get("/api/outputs/content")
    def api_read_output(path: str) -> dict[str, Any]:
        try:
            content = CleaningOutputStore(paths.output_dir).read_output(path)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"path": path, "content": content}

    @app.get("/api/events/{channel_name}")
    def api_events(
        channel_name: str,
        until_completed: bool = True,
        heartbeat_seconds: float = Query(default=15.0, gt=0),
    ) -> StreamingResponse:
        channel = channels.get(channel_name)
        if channel is None:
            raise HTTPException(status_code=404, detail=f"Unknown progress channel: {channel_name}")
        subscription = channel.subscribe()

        def iterator() -> Iterator[str]:
            try:
                while True:
                    event = subscription.get(timeout=heartbeat_seconds)
                    if event is None:
                        if subscription.closed:
                            break
                        yield ": keep-alive\n\n"
                        continue
                    yield _sse_event(event.type, event.to_payload())
                    if until_completed and event.type == EVENT_COMPLETED:
                        break
            finally:
                channel.unsubscribe(subscription)

        return StreamingResponse(
            iterator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/api/vectors")
    def api_insert_vector(req: InsertVectorRequest) -> dict[str, Any]:
        try:
            entry = get_vector_service().insert(
                NewVectorEntry(
                    content_id=req.content_id,
                    content_type=req.content_type,
                    content=req.content,
                    embedding_vector=req.embedding_vector,
                    model_name=req.model_name,
                    chunk_index=req.chunk_index,
                    metadata=req.metadata,
                )
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "entry": _entry_payload(entry)}

    @app.get("/api/vectors")
    def api_list_vectors(limit: int = Query(default=200, ge=1, le=100000)) -> dict[str, Any]:
        entries = get_vector_service().list_all()
        return {
            "total": len(entries),
            "entries": [_entry_payload(entry) for entry in entries[:limit]],
        }

    @app.get("/api/vectors/stats")
    def api_vector_stats() -> dict[str, Any]:
        return _jsonable(get_vector_service().stats())

    @app.get("/api/vectors/content/{content_type}/{content_id}")
    def api_vectors_for_content(content_type: str, content_id: str) -> dict[str, Any]:
        entries = get_vector_service().list_for_content(content_id, content_type)
        return {"entries": [_entry_payload(entry) for entry in entries]}

    @app.delete("/api/vectors/content/{content_type}/{content_id}")
    def api_delete_vectors_for_content(content_type: str, content_id: str) -> dict[str, Any]:
        return {"ok": True, "removed": get_vector_service().delete_for_content(content_id, content_type)}

    @app.post("/api/vectors/index")
    def api_index_content(req: IndexContentRequest) -> dict[str, Any]:
        try:
            entries = get_vector_service(with_gateway=True).index_content(
                req.content_id,
                req.content_type,
                req.text,
                req.model,
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "indexed": len(entries), "entries": [_entry_payload(e) for e in entries]}

    @app.post("/api/vectors/index-completed")
    def api_index_completed(req: IndexCompletedRequest | None = None) -> dict[str, Any]:
        body = req or IndexCompletedRequest()
        try:
            attempted = get_vector_service(with_gateway=True).index_completed_tasks(
                task_type=body.task_type,
                model=body.model,
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "attempted": attempted}

    @app.get("/api/vectors/{entry_id}")
    def api_get_vector(entry_id: str, include_vector: bool = True) -> dict[str, Any]:
        try:
            entry = get_vector_service().get(entry_id)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return _entry_payload(entry, include_vector=include_vector)

    @app.delete("/api/vectors/{entry_id}")
    def api_delete_vector(entry_id: str) -> dict[str, Any]:
        try:
            get_vector_service().delete_by_id(entry_id)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "deleted": entry_id}

    @app.delete("/api/vectors")
    def api_clear_vectors() -> dict[str, Any]:
        return {"ok": True, "removed": get_vector_service().clear()}

    @app.post("/api/search")
    def api_search(req: SearchRequest) -> dict[str, Any]:
        try:
            results = get_search_service().search(
                req.query,
                limit=req.limit,
                threshold=req.threshold,
                model=req.model,
            )
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"count": len(results), "results": _jsonable(results)}

    @app.get("/api/embedding/health")
    def api_embedding_health() -> dict[str, Any]:
        client = get_gateway()
        return {"provider": client.provider_name, "connected": client.check_connection()}

    @app.get("/api/embedding/models")
    def api_embedding_models() -> dict[str, Any]:
        try:
            models = get_gateway().list_models()
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"models": models, "default": app_settings.embed_model}

    @app.post("/api/embedding/embed")
    def api_embed(req: EmbedRequest) -> dict[str, Any]:
        model = req.model or app_settings.embed_model
        try:
            vector = get_gateway().embed(req.text, model)
        except DocsweepError as exc:
            raise _http_error(exc) from exc
        return {"model": model, "dimension": len(vector), "embedding": vector}

    return app
