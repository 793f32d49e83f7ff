"""FastAPI application for the business dashboard core.

Exposes:
- Health and readiness checks
- RUT validation and VAT breakdowns
- Document listing, status changes and deletion
- Dashboard, inventory finance, projections and AI analysis
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from decimal import Decimal
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from services.api import metrics
from services.documents.computation import decompose, total_gross
from services.documents.schema import Document, DocumentFilter, DocumentKind, LineItem, SaleStatus
from services.projection.schema import NarrativeResult, ProjectionResult
from services.projection.service import ProjectionService
from services.reporting.dashboard import DashboardService, DashboardSummary, FinanceOverview
from services.repository.factory import create_repository
from services.rut.validator import format_rut, validate_rut
from services.shared.config import get_settings
from services.shared.errors import PersistenceError, ValidationError
from services.shared.logging_setup import configure_logging
from services.shared.session import load_session

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PyME Dashboard",
    description="Sales, purchases, inventory and VAT figures for a small Chilean business",
    version=settings.service_version,
)

session = load_session(Path(settings.session_file))
repository = create_repository(settings)
projection_service = ProjectionService(settings)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    """Map repository failures to 503 Service Unavailable."""
    logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": f"Storage unavailable: {exc}"},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Map rejected input to 422 with one message per failed check."""
    logger.info(f"Rejected input on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"detail": exc.messages})


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class RutRequest(BaseModel):
    """RUT to check."""

    rut: str


class RutResponse(BaseModel):
    """RUT check result."""

    rut: str
    formatted: str
    valid: bool


class BreakdownRequest(BaseModel):
    """Line items to total."""

    items: list[LineItem] = Field(..., min_length=1)


class BreakdownResponse(BaseModel):
    """Gross total split into net and VAT."""

    gross: Decimal
    net: Decimal
    tax: Decimal


class StatusUpdateRequest(BaseModel):
    """New status for a sale."""

    status: SaleStatus


class AnalysisRequest(BaseModel):
    """Optional focus for the AI analysis."""

    instruction: str | None = Field(None, max_length=2000)


def _dashboard() -> DashboardService:
    return DashboardService(repository, settings, session)


def _require_write() -> None:
    if not session.can_write:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Guest sessions are read-only"
        )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/rut/validate", response_model=RutResponse, tags=["RUT"])
def check_rut(request: RutRequest) -> RutResponse:
    """Validate and format a Chilean RUT.

    ```bash
    curl -X POST "http://localhost:8000/api/v1/rut/validate" \\
      -H "Content-Type: application/json" -d '{"rut": "12.345.678-5"}'
    ```
    """
    return RutResponse(
        rut=request.rut, formatted=format_rut(request.rut), valid=validate_rut(request.rut)
    )


@app.post("/api/v1/documents/breakdown", response_model=BreakdownResponse, tags=["Documents"])
def document_breakdown(request: BreakdownRequest) -> BreakdownResponse:
    """Total gross prices and split the total into net and 19% VAT."""
    breakdown = decompose(total_gross(request.items))
    return BreakdownResponse(gross=breakdown.gross, net=breakdown.net, tax=breakdown.tax)


@app.get("/api/v1/documents", response_model=list[Document], tags=["Documents"])
def list_documents(
    kind: DocumentKind | None = Query(None, description="sale or purchase"),
    search: str | None = Query(None, description="Matches document number or counterparty"),
    sale_status: SaleStatus | None = Query(None, alias="status"),
) -> list[Document]:
    """List documents, newest first."""
    return repository.list_documents(
        DocumentFilter(kind=kind, search=search or None, status=sale_status)
    )


@app.patch("/api/v1/documents/{document_id}/status", response_model=Document, tags=["Documents"])
def update_document_status(document_id: str, request: StatusUpdateRequest) -> Document:
    """Change a sale's status.

    Raises:
        HTTPException: 403 for guest sessions, 404 if the document does not exist
    """
    _require_write()
    updated = repository.update_document_status(document_id, request.status)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return updated


@app.delete(
    "/api/v1/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Documents"],
)
def delete_document(document_id: str) -> Response:
    """Delete a document and its line items.

    Raises:
        HTTPException: 403 for guest sessions, 404 if the document does not exist
    """
    _require_write()
    if not repository.delete_document(document_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/v1/dashboard/summary", response_model=DashboardSummary, tags=["Dashboard"])
def dashboard_summary() -> DashboardSummary:
    """Current month's sales, purchases, profit, VAT and top seller."""
    return _dashboard().summary()


@app.get("/api/v1/finance/inventory", response_model=FinanceOverview, tags=["Dashboard"])
def finance_inventory() -> FinanceOverview:
    """Inventory valuation and potential profit."""
    return _dashboard().finance_overview()


@app.get("/api/v1/projections", response_model=ProjectionResult, tags=["Projections"])
def sales_projection(
    horizon: str = Query("1m", description="1m, 3m, 6m or 1y"),
) -> ProjectionResult:
    """Project monthly sales. Falls back to a deterministic growth model on AI failure."""
    start = time.time()
    result = projection_service.project(_dashboard().sales_history(), horizon)
    metrics.projection_duration_seconds.labels(operation="projection").observe(time.time() - start)
    return result


@app.post("/api/v1/analysis", response_model=NarrativeResult, tags=["Projections"])
def business_analysis(request: AnalysisRequest) -> NarrativeResult:
    """Markdown strategy report over the current figures."""
    start = time.time()
    result = projection_service.narrative(_dashboard().snapshot(), request.instruction)
    metrics.projection_duration_seconds.labels(operation="narrative").observe(time.time() - start)
    return result
