"""
Contraindication Alert Engine - FastAPI REST API
"""
from fastapi import FastAPI, HTTPException, Query, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import logging

from contraindication_engine.config.settings import (
    API_HOST, API_PORT, API_TITLE, API_VERSION, LOG_LEVEL, LOG_FORMAT
)
from contraindication_engine.core.alert_service import AlertEngine, get_alert_engine
from contraindication_engine.core.exceptions import (
    LedgerReadFailed, LedgerWriteFailed, UnknownAlert
)
from contraindication_engine.core.models import IntakeRecord

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


# Pydantic models for API
class IntakeRequest(BaseModel):
    answers: Dict[str, Any] = {}
    age: Optional[int] = Field(None, ge=0, le=150)


class PlanRequest(BaseModel):
    phrases: List[str] = []
    text: Optional[str] = Field(None, description="Free-text plan section, split on list delimiters")


class EvaluateRequest(PlanRequest):
    individual_id: str = "anonymous"
    intake: IntakeRequest = IntakeRequest()


class AcknowledgeRequest(BaseModel):
    rule_id: str = Field(..., min_length=1)
    practitioner_id: str = Field(..., min_length=1)


class AcknowledgeCriticalRequest(BaseModel):
    practitioner_id: str = Field(..., min_length=1)


class AlertResponse(BaseModel):
    id: str
    rule_id: str
    rule_kind: str
    severity: str
    subject_name: str
    counterpart_name: str
    message: str
    recommendation: str
    source: str
    acknowledged: bool


class AlertReportResponse(BaseModel):
    individual_id: str
    status: str
    issues: List[str]
    alerts: List[AlertResponse]
    unacknowledged_counts: Dict[str, int]
    requires_validation: bool
    evaluated_at: str


class SubstanceMatchResponse(BaseModel):
    id: str
    name: str
    aliases: List[str]
    type: str


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    catalog_loaded: bool
    unavailable_tables: List[str]
    statistics: Dict[str, Any]
    timestamp: str


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description="Contraindication and substance-interaction alerts for care plans, "
                "with an auditable acknowledgement ledger.",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Warm the reference catalog"""
    logger.info(f"Starting {API_TITLE}...")
    snapshot = await get_alert_engine().catalog_store.get_snapshot()
    if not snapshot.is_complete:
        logger.warning(f"Catalog started degraded: {', '.join(snapshot.unavailable)}")


@app.on_event("shutdown")
async def shutdown_event():
    await get_alert_engine().close()


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint"""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "status": "operational",
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
async def health_check(engine: AlertEngine = Depends(get_alert_engine)):
    """Health check endpoint"""
    snapshot = engine.catalog_store.snapshot
    if snapshot is None:
        status = "initializing"
    elif not snapshot.can_evaluate:
        status = "unavailable"
    elif not snapshot.is_complete:
        status = "degraded"
    else:
        status = "healthy"

    return HealthCheckResponse(
        status=status,
        version=API_VERSION,
        catalog_loaded=snapshot is not None,
        unavailable_tables=snapshot.unavailable if snapshot else [],
        statistics=snapshot.statistics() if snapshot else {},
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@app.post("/admin/reload-catalog", tags=["Admin"])
async def reload_catalog(engine: AlertEngine = Depends(get_alert_engine)):
    """Reload reference data and recompute every open alert stream"""
    snapshot = await engine.reload_catalog()
    return {
        "status": "success" if snapshot.is_complete else "degraded",
        "statistics": snapshot.statistics(),
        "streams_refreshed": len(engine.streams)
    }


@app.post("/alerts/evaluate", response_model=AlertReportResponse, tags=["Alerts"])
async def evaluate_alerts(request: EvaluateRequest, engine: AlertEngine = Depends(get_alert_engine)):
    """
    One-shot evaluation of a plan against inline intake answers.

    Nothing is persisted and no acknowledgement state is read.
    """
    report = await engine.evaluate_once(
        phrases=request.phrases,
        text=request.text,
        intake=IntakeRecord(
            individual_id=request.individual_id,
            answers=request.intake.answers,
            age=request.intake.age,
        ),
        individual_id=request.individual_id,
    )
    return report.to_dict()


@app.put("/individuals/{individual_id}/plan", response_model=AlertReportResponse, tags=["Alerts"])
async def submit_plan(
    individual_id: str,
    request: PlanRequest,
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Replace the plan's substance mentions and return the recomputed alerts"""
    stream = engine.stream_for(individual_id)
    stream.submit_plan(phrases=request.phrases, text=request.text)
    report = await stream.wait_idle()
    return report.to_dict()


@app.get("/individuals/{individual_id}/alerts", response_model=AlertReportResponse, tags=["Alerts"])
async def get_alerts(individual_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Current alert list and unacknowledged counts"""
    report = await engine.current_report(individual_id)
    return report.to_dict()


@app.post("/individuals/{individual_id}/acknowledge", response_model=AlertReportResponse, tags=["Acknowledgements"])
async def acknowledge_alert(
    individual_id: str,
    request: AcknowledgeRequest,
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Record that a practitioner accepts responsibility for one alert"""
    stream = engine.find_stream(individual_id)
    if stream is None:
        raise HTTPException(status_code=404, detail=UnknownAlert(request.rule_id, individual_id).to_dict())
    try:
        await stream.acknowledge(request.rule_id, request.practitioner_id)
    except UnknownAlert as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    except LedgerWriteFailed as e:
        logger.error(f"Acknowledgement not saved for {individual_id}: {e}")
        raise HTTPException(status_code=503, detail=e.to_dict())
    return stream.report.to_dict()


@app.post("/individuals/{individual_id}/acknowledge-critical", response_model=AlertReportResponse, tags=["Acknowledgements"])
async def acknowledge_critical(
    individual_id: str,
    request: AcknowledgeCriticalRequest,
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Acknowledge every unacknowledged critical alert before sharing the plan"""
    stream = engine.find_stream(individual_id)
    if stream is None:
        return (await engine.current_report(individual_id)).to_dict()
    try:
        await stream.acknowledge_critical(request.practitioner_id)
    except LedgerWriteFailed as e:
        logger.error(f"Critical acknowledgement interrupted for {individual_id}: {e}")
        raise HTTPException(status_code=503, detail=e.to_dict())
    return stream.report.to_dict()


@app.get("/individuals/{individual_id}/acknowledgements", tags=["Acknowledgements"])
async def list_acknowledgements(individual_id: str, engine: AlertEngine = Depends(get_alert_engine)):
    """Audit trail of acknowledgements for an individual"""
    try:
        records = await engine.acknowledgements(individual_id)
    except LedgerReadFailed as e:
        raise HTTPException(status_code=503, detail=e.to_dict())
    return {
        "individual_id": individual_id,
        "count": len(records),
        "acknowledgements": [r.to_dict() for r in records]
    }


@app.get("/substances/match", response_model=List[SubstanceMatchResponse], tags=["Substances"])
async def match_substances(
    q: str = Query(..., min_length=1, description="Plan phrase"),
    limit: int = Query(20, ge=1, le=100),
    engine: AlertEngine = Depends(get_alert_engine)
):
    """Preview which catalog substances a plan phrase resolves to"""
    substances = await engine.preview_matches(q, limit)
    return [s.to_dict() for s in substances]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
