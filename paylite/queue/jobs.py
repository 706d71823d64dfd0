from paylite.observability.logging import log
from paylite.queue.rq_conn import get_queue


def apply_transition_job(job_id: str):
    """
    RQ job: apply one claimed transition. The ledger and the compare-and-set
    make a duplicate delivery harmless (it resolves as stale or missing).
    """
    from paylite.services import get_services

    try:
        log(event="transition_job_start", jobId=job_id)
        return get_services().scheduler.fire(job_id)
    except Exception as e:
        log(event="transition_job_exception", jobId=job_id, error=str(e))
        raise


def enqueue_transition(job_id: str):
    q = get_queue()
    job = q.enqueue(apply_transition_job, job_id)
    log(event="transition_enqueued", jobId=job_id, rq_job_id=getattr(job, "id", "") or "")
    return job
