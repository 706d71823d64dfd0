# Transaction lifecycle states

# Intake: record persisted, awaiting a channel choice
CREATED = "created"

# Channel chosen (mode set); the processing step is scheduled
CONFIRMED = "confirmed"

# Scheduler picked the transaction up; settle step is scheduled
PROCESSING = "processing"

# Terminal outcomes
SUCCESS = "success"
PENDING = "pending"
FAILED = "failed"

STATUSES = (CREATED, CONFIRMED, PROCESSING, SUCCESS, PENDING, FAILED)
TERMINAL_STATUSES = frozenset({SUCCESS, PENDING, FAILED})

# Instruction channels
MODE_USSD = "ussd"
MODE_IVR = "ivr"
MODES = (MODE_USSD, MODE_IVR)

# The only legal edges. Nothing ever points back at CREATED.
ALLOWED_TRANSITIONS = {
    CREATED: frozenset({CONFIRMED}),
    CONFIRMED: frozenset({PROCESSING}),
    PROCESSING: TERMINAL_STATUSES,
    SUCCESS: frozenset(),
    PENDING: frozenset(),
    FAILED: frozenset(),
}


def can_transition(src: str, dst: str) -> bool:
    return dst in ALLOWED_TRANSITIONS.get(src, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
