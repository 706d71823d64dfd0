#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import paylite.main
    print("Import paylite.main: OK")

    import paylite.queue.worker
    print("Import paylite.queue.worker: OK")

    from paylite.core.outcomes import parse_weights
    from paylite.settings import settings
    parse_weights(settings.OUTCOME_WEIGHTS)
    print("OUTCOME_WEIGHTS: OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
