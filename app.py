# app.py — Assignment Impact service
# - Read-only HTTP surface over the DiD impact engine
# - "Not yet measurable" assignments map to 404, everything else recomputes per request

import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

import db
from engines.impact import ImpactEngine
from env_validation import validate_environment
from schemas import ImpactResult, ImpactSummary, StandardImpactResult

logger = logging.getLogger(__name__)

_CACHE_HEADERS = {"Cache-Control": "private, max-age=300"}


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        settings = validate_environment()
        logging.basicConfig(level=settings["LOG_LEVEL"])
        db.get_repository()
        logger.info("Impact service ready (database: %s)", settings["DB_PATH"])
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Assignment Impact", version="1.0.0", lifespan=_lifespan)


def _engine() -> ImpactEngine:
    return ImpactEngine(db.get_repository())


def _cached(payload) -> JSONResponse:
    return JSONResponse(content=payload.model_dump(mode="json"), headers=_CACHE_HEADERS)


@app.get("/health")
def health():
    return {"status": "ok", "db_path": os.getenv("DB_PATH", db.DB_PATH)}


@app.get("/assignments/{assignment_id}/impact", response_model=ImpactResult)
def assignment_impact(assignment_id: int):
    try:
        impact = _engine().compute_assignment_impact(assignment_id, include_points=True)
    except Exception:
        logger.error("Failed to calculate impact for assignment %s", assignment_id, exc_info=True)
        raise
    if impact is None:
        raise HTTPException(status_code=404, detail="Assignment not found or has no impacted test")
    return _cached(impact)


@app.get("/assignments/{assignment_id}/standard-impact", response_model=StandardImpactResult)
def assignment_standard_impact(assignment_id: int):
    try:
        result = _engine().compute_standard_level_impact(assignment_id)
    except Exception:
        logger.error("Failed to calculate standard-level impact for assignment %s", assignment_id, exc_info=True)
        raise
    if result is None:
        raise HTTPException(status_code=404, detail="Assignment not found or has no impacted test")
    return _cached(result)


@app.get("/impact/summary", response_model=ImpactSummary)
def impact_summary(group_id: int, include_standards: bool = False):
    try:
        impacts: List[ImpactResult] = _engine().compute_portfolio_impacts(
            group_id, include_standard_breakdown=include_standards
        )
    except Exception:
        logger.error("Failed to calculate impact summary for group %s", group_id, exc_info=True)
        raise
    return _cached(ImpactSummary(impacts=impacts))
