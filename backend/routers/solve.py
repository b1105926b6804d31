"""Solver API routes."""

import logging

from fastapi import APIRouter, HTTPException

from resection.api import reproject_points, solve
from resection.core.errors import InputValidationError, SerializationError
from resection.core.models.messages import (
    ReprojectRequest,
    ReprojectResponse,
    SolveRequest,
    SolveResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["solve"])


@router.post("/solve", response_model=SolveResponse, response_model_exclude_none=True)
def solve_camera(request: SolveRequest) -> SolveResponse:
    """Estimate camera pose and intrinsics from correspondences."""
    try:
        return solve(request)
    except SerializationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InputValidationError as e:
        logger.info(f"Rejected solve request: {e}")
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/reproject", response_model=ReprojectResponse, response_model_exclude_none=True)
def reproject(request: ReprojectRequest) -> ReprojectResponse:
    """Project world points through a known camera."""
    try:
        return reproject_points(request)
    except SerializationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
