from contextlib import asynccontextmanager
import time

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.db.repo import init_db
from app.routers import metrics, search
from app.services.errors import InvalidQueryError
from app.services.search import SearchService, get_search_service
from app.utils import slog
from app.utils.metrics import record_request, record_endpoint
import app.utils.logging  # noqa: F401  (file sink)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    svc = get_search_service()
    stats = svc.warm_up()
    logger.info(f"[main] search service ready ({len(svc.items)} items, {stats['replayed']} queries replayed)")
    yield
    svc.shutdown()


app = FastAPI(
    title="Marketplace Search",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(InvalidQueryError)
async def _invalid_query(request: Request, exc: InvalidQueryError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def _request_id(request: Request) -> str:
    # reuse the caller's id so logs correlate across services
    incoming = (request.headers.get("X-Request-ID") or "").strip()
    return incoming[:64] if incoming else slog.new_request_id()


@app.middleware("http")
async def _logging_middleware(request: Request, call_next):
    start = time.perf_counter()
    req_id = _request_id(request)
    path = request.url.path
    client_ip = request.client.host if request.client else None
    try:
        response = await call_next(request)
    except Exception as e:
        slog.log_event(
            "request.error",
            request_id=req_id,
            path=path,
            method=request.method,
            latency_ms=int((time.perf_counter() - start) * 1000),
            client_ip=client_ip,
            error=repr(e),
            **(getattr(request.state, "log_context", None) or {}),
        )
        raise

    latency_ms = int((time.perf_counter() - start) * 1000)
    ctx = dict(getattr(request.state, "log_context", None) or {})
    ctx.setdefault("rate_limited", response.status_code == 429)
    slog.finalize_request_log(
        request_id=req_id,
        method=request.method,
        path=path,
        status=response.status_code,
        latency_ms=latency_ms,
        client_ip=client_ip,
        ctx=ctx,
    )
    record_request(latency_ms=latency_ms)
    record_endpoint(method=request.method, path=path, latency_ms=latency_ms)
    response.headers["X-Request-ID"] = req_id
    return response


@app.get("/health")
def health(svc: SearchService = Depends(get_search_service)):
    return {"status": "ok", "items": len(svc.items), "indexed": len(svc.keyword_index)}


app.include_router(search.router)
app.include_router(metrics.router)
