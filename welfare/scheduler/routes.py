"""Admin endpoints for inspecting and manually running scheduler jobs."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_scheduler, require_admin
from ..users.models import User
from .service import JobRun, Scheduler

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


def _run_to_dict(run: JobRun) -> dict:
    return {
        "name": run.name,
        "ok": run.ok,
        "skipped": run.skipped,
        "count": run.count,
        "error": str(run.error) if run.error else None,
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
    }


@router.get("/jobs")
def list_jobs(
    scheduler: Scheduler = Depends(get_scheduler),
    admin: User = Depends(require_admin),
):
    return JSONResponse(
        {
            "running": scheduler.running,
            "jobs": [
                {
                    "name": name,
                    "last_run": _run_to_dict(scheduler.last_runs[name]) if name in scheduler.last_runs else None,
                }
                for name in scheduler.job_names
            ],
        }
    )


@router.post("/jobs/{name}/run")
async def run_job(
    name: str,
    scheduler: Scheduler = Depends(get_scheduler),
    admin: User = Depends(require_admin),
):
    run = await scheduler.trigger(name)
    status_code = 200 if run.ok or run.skipped else 500
    return JSONResponse(_run_to_dict(run), status_code=status_code)
