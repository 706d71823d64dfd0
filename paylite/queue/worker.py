"""
Standalone scheduler process:

    python -m paylite.queue.worker

Runs the transition polling loop outside the API process (set
SCHEDULER_ENABLED=false on the API when using it). With SCHEDULER_DISPATCH=rq
this loop only claims due jobs; run `rq worker <RQ_QUEUE_NAME>` to apply them.
"""
from paylite.observability.logging import log
from paylite.services import get_services
from paylite.settings import settings


def main() -> None:
    services = get_services()
    log(event="worker_boot", backend=settings.STORE_BACKEND, dispatch=settings.SCHEDULER_DISPATCH,
        pending=services.scheduler.stats())
    services.scheduler.run_forever()


if __name__ == "__main__":
    main()
