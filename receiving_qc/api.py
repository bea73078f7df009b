"""
FastAPI application for the Receiving QC Service.

Provides REST API endpoints for:
- Health check
- Opening, inspecting and discarding verification sessions
- Uploading an invoice for line item extraction
- Counting, marking and annotating items
- Moving between the verify and report phases
- Saving reports and listing delivery history
"""

import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import logger, API_HOST, API_PORT, MAX_UPLOAD_SIZE_MB, WorkflowPhase
from .errors import (
    ExtractionError,
    IndexOutOfRangeError,
    InvalidTransitionError,
    ItemStateError,
    RasterizationError,
    StorageError,
)
from .extractor import GeminiExtractor, LineItemExtractor
from .rasterize import load_source_pages
from .report import build_report
from .schemas import (
    CatalogEntry,
    CreateSessionRequest,
    ExtractionResult,
    MarkItemRequest,
    NotesRequest,
    ReceivingReport,
    SaveReportResponse,
    SessionState,
    StoredReport,
)
from .session import VerificationSession
from .storage import ReportStore


# ============================================================================
# FastAPI App Configuration
# ============================================================================

app = FastAPI(
    title="Receiving QC Service API",
    description="""
    Receiving Verification Service API.

    Check physical deliveries against their invoices: upload an invoice,
    count what arrived, and save a discrepancy report.

    ## Workflow

    - **Scan**: Upload an invoice photo or PDF for line item extraction
    - **Verify**: Count each item; mark missing or damaged goods
    - **Report**: Review discrepancies and save the receiving report
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Session Registry & Dependencies
# ============================================================================

@dataclass
class SessionEntry:
    """A live session plus the data the API keeps alongside it."""
    session: VerificationSession = field(default_factory=VerificationSession)
    catalog: list[CatalogEntry] = field(default_factory=list)
    pending_report: Optional[ReceivingReport] = None


class SessionRegistry:
    """In-memory map of session identifiers to sessions."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionEntry] = {}

    def create(self, catalog: list[CatalogEntry]) -> tuple[str, SessionEntry]:
        session_id = uuid.uuid4().hex
        entry = SessionEntry(catalog=list(catalog))
        self._entries[session_id] = entry
        return session_id, entry

    def get(self, session_id: str) -> SessionEntry:
        entry = self._entries.get(session_id)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return entry

    def remove(self, session_id: str) -> None:
        self.get(session_id)
        del self._entries[session_id]


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _registry


def get_extractor() -> LineItemExtractor:
    return GeminiExtractor()


def get_report_store() -> ReportStore:
    return ReportStore()


def session_state(session_id: str, entry: SessionEntry) -> SessionState:
    session = entry.session
    return SessionState(
        session_id=session_id,
        phase=session.phase,
        items=list(session.items),
        summary=session.summary(),
        can_advance=session.can_advance(),
        vendor_name=session.vendor_name,
        invoice_number=session.invoice_number,
        last_error=session.last_error,
    )


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


# ============================================================================
# System Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns the service status and version information.
    """
    from . import __version__
    return HealthResponse(status="ok", version=__version__)


# ============================================================================
# Session Endpoints
# ============================================================================

@app.post("/sessions", response_model=SessionState, status_code=201, tags=["Sessions"])
async def create_session(
    request: Optional[CreateSessionRequest] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    """Open a new verification session in the scan phase."""
    catalog = request.catalog if request else []
    session_id, entry = registry.create(catalog)
    logger.info(f"Opened session {session_id} with {len(catalog)} catalog entries")
    return session_state(session_id, entry)


@app.get("/sessions/{session_id}", response_model=SessionState, tags=["Sessions"])
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    """Return the current phase, items and summary of a session."""
    return session_state(session_id, registry.get(session_id))


@app.delete("/sessions/{session_id}", status_code=204, tags=["Sessions"])
async def delete_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    """Discard a session entirely."""
    registry.remove(session_id)


@app.post(
    "/sessions/{session_id}/extract",
    response_model=SessionState,
    tags=["Scan"],
    summary="Extract line items from an invoice upload",
)
async def extract_invoice(
    session_id: str,
    file: UploadFile = File(..., description="Invoice photo or PDF"),
    registry: SessionRegistry = Depends(get_registry),
    extractor: LineItemExtractor = Depends(get_extractor),
) -> SessionState:
    """
    Extract line items from an uploaded invoice and start verification.

    **Processing Steps:**
    1. Rasterize PDF uploads into one image per page
    2. Extract line items from each page, in page order
    3. Create uncounted verification items and move to the verify phase

    On failure the session stays in the scan phase and the upload can be retried.
    """
    entry = registry.get(session_id)
    content = await file.read()

    max_size = MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(content) > max_size:
        raise HTTPException(status_code=413, detail=f"File too large (max {MAX_UPLOAD_SIZE_MB}MB)")

    pages = load_source_pages(content)
    applied = await entry.session.run_extraction(extractor, pages, entry.catalog)
    if not applied:
        raise HTTPException(status_code=409, detail="Session was reset while extraction was running")

    logger.info(f"Session {session_id}: extracted items from {file.filename} ({len(pages)} page(s))")
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/items", response_model=SessionState, tags=["Scan"])
async def load_items(
    session_id: str,
    result: ExtractionResult,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionState:
    """Start verification from line items that were extracted elsewhere."""
    entry = registry.get(session_id)
    entry.session.load_extraction(result)
    return session_state(session_id, entry)


# ============================================================================
# Item Endpoints
# ============================================================================

@app.post("/sessions/{session_id}/items/{index}/increment", response_model=SessionState, tags=["Verify"])
async def increment_item(session_id: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    """Count one more unit of an item."""
    entry = registry.get(session_id)
    entry.session.increment_count(index)
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/items/{index}/decrement", response_model=SessionState, tags=["Verify"])
async def decrement_item(session_id: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    """Remove one counted unit of an item."""
    entry = registry.get(session_id)
    entry.session.decrement_count(index)
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/items/{index}/reset", response_model=SessionState, tags=["Verify"])
async def reset_item(session_id: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    """Roll an item back to uncounted."""
    entry = registry.get(session_id)
    entry.session.reset_count(index)
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/items/{index}/finish", response_model=SessionState, tags=["Verify"])
async def finish_item(session_id: str, index: int, registry: SessionRegistry = Depends(get_registry)):
    """Confirm an item's current count as final."""
    entry = registry.get(session_id)
    entry.session.finish_counting(index)
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/items/{index}/mark", response_model=SessionState, tags=["Verify"])
async def mark_item(
    session_id: str,
    index: int,
    request: MarkItemRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Mark an item as missing or damaged."""
    entry = registry.get(session_id)
    entry.session.mark_as(index, request.status)
    return session_state(session_id, entry)


@app.put("/sessions/{session_id}/items/{index}/notes", response_model=SessionState, tags=["Verify"])
async def set_item_notes(
    session_id: str,
    index: int,
    request: NotesRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Attach notes to a verified item."""
    entry = registry.get(session_id)
    entry.session.set_notes(index, request.notes)
    return session_state(session_id, entry)


# ============================================================================
# Phase Endpoints
# ============================================================================

@app.post("/sessions/{session_id}/report", response_model=ReceivingReport, tags=["Report"])
async def advance_to_report(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Finish verifying and preview the receiving report."""
    entry = registry.get(session_id)
    entry.session.advance_to_report()
    entry.pending_report = build_report(entry.session)
    return entry.pending_report


@app.post("/sessions/{session_id}/verify", response_model=SessionState, tags=["Report"])
async def return_to_verify(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Go back from the report to make corrections."""
    entry = registry.get(session_id)
    entry.session.return_to_verify()
    entry.pending_report = None
    return session_state(session_id, entry)


@app.post("/sessions/{session_id}/reset", response_model=SessionState, tags=["Sessions"])
async def reset_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Abandon the current verification and start over at scan."""
    entry = registry.get(session_id)
    entry.session.reset()
    entry.pending_report = None
    return session_state(session_id, entry)


@app.post(
    "/sessions/{session_id}/save",
    response_model=SaveReportResponse,
    status_code=201,
    tags=["Report"],
)
async def save_report(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
    store: ReportStore = Depends(get_report_store),
) -> SaveReportResponse:
    """
    Persist the report and start a fresh verification.

    If the store fails, the session and its report are kept so saving can
    be retried without recounting.
    """
    entry = registry.get(session_id)
    if entry.session.phase != WorkflowPhase.REPORT:
        raise InvalidTransitionError(
            "Continue to the report before saving",
            entry.session.phase,
            WorkflowPhase.REPORT,
        )
    if entry.pending_report is None:
        entry.pending_report = build_report(entry.session)

    report_id = store.save(entry.pending_report)
    response = SaveReportResponse(report_id=report_id, report=entry.pending_report)

    entry.session.reset()
    entry.pending_report = None
    return response


@app.get("/reports", response_model=List[StoredReport], tags=["History"])
async def list_reports(store: ReportStore = Depends(get_report_store)) -> List[StoredReport]:
    """List saved receiving reports, newest first."""
    return store.list_reports()


@app.get("/reports/{report_id}", response_model=StoredReport, tags=["History"])
async def get_report(report_id: str, store: ReportStore = Depends(get_report_store)) -> StoredReport:
    """Fetch a single saved report."""
    stored = store.get(report_id)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return stored


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(InvalidTransitionError)
@app.exception_handler(ItemStateError)
async def conflict_handler(request: Request, exc: Exception):
    """Reject operations the session's current state does not allow."""
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(IndexOutOfRangeError)
async def index_handler(request: Request, exc: IndexOutOfRangeError):
    """Item index does not exist in the session."""
    logger.error(f"Bad item index on {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ExtractionError)
async def extraction_handler(request: Request, exc: ExtractionError):
    """Extraction failed; the session is still scanning."""
    return JSONResponse(status_code=422, content={"detail": str(exc), "kind": exc.kind.value})


@app.exception_handler(RasterizationError)
async def rasterization_handler(request: Request, exc: RasterizationError):
    """The uploaded document could not be read."""
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_handler(request: Request, exc: StorageError):
    """The report store failed; nothing in the session was discarded."""
    logger.error(f"Storage failure: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ============================================================================
# Startup/Shutdown Events
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info(f"Receiving QC Service API starting on {API_HOST}:{API_PORT}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Receiving QC Service API shutting down")


# ============================================================================
# Main Entry Point
# ============================================================================

def run_server():
    """Run the API server using uvicorn."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run_server()
