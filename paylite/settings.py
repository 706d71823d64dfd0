import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_VERSION: str = os.getenv("API_VERSION", "1.0.0")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Storage backend: "redis" (durable, default) or "memory" (single process, dev/tests)
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "redis").lower()
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_SOCKET_TIMEOUT_SEC: float = float(os.getenv("REDIS_SOCKET_TIMEOUT_SEC", "5"))
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "transitions")
    RQ_JOB_TIMEOUT_SEC: int = int(os.getenv("RQ_JOB_TIMEOUT_SEC", "30"))

    # Lifecycle timing. The settle delay is measured from the processing step firing,
    # so a confirmed transaction is terminal ~4.5s after confirmation.
    PROCESSING_DELAY_SEC: float = float(os.getenv("PROCESSING_DELAY_SEC", "1.5"))
    SETTLE_DELAY_SEC: float = float(os.getenv("SETTLE_DELAY_SEC", "3.0"))

    # Terminal outcome weights (status:weight, comma separated)
    OUTCOME_WEIGHTS: str = os.getenv("OUTCOME_WEIGHTS", "success:3,pending:1,failed:1")
    # Empty means unseeded (production); set an int for reproducible outcomes
    RANDOM_SEED: str = os.getenv("RANDOM_SEED", "")

    # Scheduler loop
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    SCHEDULER_POLL_INTERVAL_SEC: float = float(os.getenv("SCHEDULER_POLL_INTERVAL_SEC", "0.1"))
    SCHEDULER_BATCH_SIZE: int = int(os.getenv("SCHEDULER_BATCH_SIZE", "100"))
    # How often the poll loop re-seeds confirmations that have no transition job
    SCHEDULER_RECONCILE_INTERVAL_SEC: float = float(os.getenv("SCHEDULER_RECONCILE_INTERVAL_SEC", "5"))
    # Modes:
    # - "inline": the polling thread applies due transitions itself
    # - "rq": the polling thread claims due jobs and hands them to RQ workers
    SCHEDULER_DISPATCH: str = os.getenv("SCHEDULER_DISPATCH", "inline").lower()

    # Transition job ledger
    TRANSITION_LEASE_MS: int = int(os.getenv("TRANSITION_LEASE_MS", "30000"))
    TRANSITION_MAX_ATTEMPTS: int = int(os.getenv("TRANSITION_MAX_ATTEMPTS", "5"))
    TRANSITION_BASE_DELAY_MS: int = int(os.getenv("TRANSITION_BASE_DELAY_MS", "500"))
    TRANSITION_MAX_DELAY_MS: int = int(os.getenv("TRANSITION_MAX_DELAY_MS", "30000"))

    # Listing
    LIST_DEFAULT_LIMIT: int = int(os.getenv("LIST_DEFAULT_LIMIT", "50"))
    LIST_MAX_LIMIT: int = int(os.getenv("LIST_MAX_LIMIT", "100"))

    # Security & Privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

settings = Settings()
