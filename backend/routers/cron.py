"""
Scheduler-triggered endpoints

Both sweeps are blocking work, so the handlers are plain functions and run
in FastAPI's threadpool.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
import structlog

from auth import require_cron_auth
from pipeline.error_handler import PipelineError
from pipeline.generation_reconciler import GenerationReconciler, create_generation_reconciler
from pipeline.orchestrator import ProjectOrchestrator, create_project_orchestrator

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/cron",
    tags=["Cron"],
    dependencies=[Depends(require_cron_auth)],
)


def sweep_failure_response(error: Exception) -> JSONResponse:
    content = {"error": "Unexpected error"}
    if isinstance(error, PipelineError):
        content.update(error.to_dict())
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def get_project_orchestrator() -> ProjectOrchestrator:
    return create_project_orchestrator()


def get_generation_reconciler() -> GenerationReconciler:
    return create_generation_reconciler()


@router.get("/process-movie-scenes")
def process_movie_scenes(orchestrator: ProjectOrchestrator = Depends(get_project_orchestrator)):
    """
    Run one movie scene sweep

    Returns:
        202 when another sweep holds the lock, otherwise the sweep summary
    """
    try:
        summary = orchestrator.run_sweep()
    except Exception as e:
        logger.error("movie_sweep_failed", error=str(e), exc_info=True)
        return sweep_failure_response(e)

    if summary.skipped:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"ok": True, "skipped": True, "reason": "Lock held"}
        )

    if summary.projects == 0:
        return {"ok": True, "message": "No generating projects", "processed": 0}

    return {
        "ok": True,
        "processed": summary.processed,
        "errors": summary.errors,
        "projects": summary.projects,
    }


@router.get("/ai-generation-timeout")
def ai_generation_timeout(reconciler: GenerationReconciler = Depends(get_generation_reconciler)):
    """Poll stale generations, expire timed-out ones and refund their credits"""
    try:
        summary = reconciler.run()
    except Exception as e:
        logger.error("reconcile_sweep_failed", error=str(e), exc_info=True)
        return sweep_failure_response(e)

    if summary.skipped:
        return {"ok": True, "skipped": True, "message": "Another instance is running"}

    return {"ok": True, **summary.model_dump(exclude={"skipped"})}
