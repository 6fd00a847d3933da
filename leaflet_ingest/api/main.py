"""FastAPI operations surface: trigger ingestion runs and read their reports."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, BackgroundTasks, Depends
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from leaflet_ingest.chains import get_strategies
from leaflet_ingest.config import config
from leaflet_ingest.jobs.report import RunReport
from leaflet_ingest.jobs.runner import run_ingest
from leaflet_ingest.store.base import build_sink

logger = logging.getLogger(__name__)

app = FastAPI(title="Leaflet Ingest API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)

# Most recent finished run
app.state.latest_report = None


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    if config.API_KEY:
        if not api_key or api_key != config.API_KEY:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


class RunRequest(BaseModel):
    """Request model for an ingestion run."""
    chains: Optional[list[str]] = None
    dry_run: bool = False


class RunAccepted(BaseModel):
    run_id: str
    chains: list[str]
    status: str = "scheduled"


async def execute_run(run_id: str, chains: list[str], dry_run: bool) -> None:
    """Background task: run the ingestion with its own sink."""
    sink = build_sink("sqlite" if dry_run else "supabase")
    try:
        await sink.open()
        report = await run_ingest(get_strategies(chains), sink, run_id=run_id)
    except Exception as e:
        logger.error(f"Run {run_id} failed: {e}", exc_info=True)
        return
    finally:
        await sink.close()
    report.log()
    app.state.latest_report = report


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/runs", response_model=RunAccepted, status_code=202)
async def start_run(
    request: RunRequest,
    background_tasks: BackgroundTasks,
    _: bool = Depends(verify_api_key),
):
    """Schedule an ingestion run (requires API key if configured)."""
    try:
        strategies = get_strategies(request.chains)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e.args[0]))
    if not request.dry_run and (not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE):
        raise HTTPException(status_code=400, detail="Supabase is not configured; use dry_run")

    run_id = str(uuid.uuid4())
    keys = [s.key for s in strategies]
    background_tasks.add_task(execute_run, run_id, keys, request.dry_run)
    logger.info(f"Scheduled run {run_id} for {keys}")
    return RunAccepted(run_id=run_id, chains=keys)


@app.get("/runs/latest")
async def latest_run(_: bool = Depends(verify_api_key)):
    """Summary of the most recent finished run."""
    report: Optional[RunReport] = app.state.latest_report
    if report is None:
        raise HTTPException(status_code=404, detail="No run has finished yet")
    return report.get_summary()
