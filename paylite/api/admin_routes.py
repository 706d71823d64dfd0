from fastapi import APIRouter, Request

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats")
def get_stats(request: Request):
    """
    Lifecycle counters, scheduler lag percentiles and the transition backlog
    (due / inflight / dead-lettered jobs).
    """
    services = request.app.state.services
    return {
        "metrics": services.metrics.snapshot(),
        "scheduler": services.scheduler.stats(),
    }
