"""Server status model and payment status ordering."""

# Provider-reported server statuses. `offline` is the provider's word for a
# powered-off instance and is treated as `stopped`.
SERVER_STATUSES = {
    "provisioning",
    "running",
    "offline",
    "stopped",
    "booting",
    "rebooting",
    "shutting_down",
    "rebuilding",
    "migrating",
    "cloning",
    "restoring",
    "deleting",
    "failed",
    "unknown",
}

ALLOWED_SERVER_TRANSITIONS: dict[str, set[str]] = {
    "provisioning": {"provisioning", "booting", "running", "offline", "stopped", "failed"},
    "booting": {"booting", "running", "offline", "stopped", "failed"},
    "running": {"running", "shutting_down", "rebooting", "offline", "stopped"},
    "shutting_down": {"shutting_down", "offline", "stopped"},
    "offline": {"offline", "stopped", "booting", "running"},
    "stopped": {"stopped", "offline", "booting", "running"},
    "rebooting": {"rebooting", "booting", "running"},
    "rebuilding": {"rebuilding", "provisioning", "booting", "running", "offline", "stopped"},
    "failed": {"failed", "provisioning", "booting", "running", "offline", "stopped"},
}

# Every state may move to these (rebuild, provider-side maintenance, deletion).
ANY_STATE_TARGETS = {"rebuilding", "migrating", "cloning", "restoring", "deleting", "unknown"}

POWER_ACTIONS = {"start", "stop", "reboot"}


def normalize_server_status(raw: str | None) -> str:
    """Map a provider status string onto the local status vocabulary."""

    status = (raw or "").strip().lower()
    if status == "offline":
        return "stopped"
    return status if status in SERVER_STATUSES else "unknown"


def is_expected_server_transition(current: str | None, new: str) -> bool:
    """True when `current -> new` is part of the modeled lifecycle."""

    if current is None or new in ANY_STATE_TARGETS:
        return True
    allowed = ALLOWED_SERVER_TRANSITIONS.get(current)
    if allowed is None:
        return True
    return new in allowed


PAYMENT_STATUS_RANK: dict[str, int] = {
    "waiting": 0,
    "confirming": 1,
    "confirmed": 2,
    "sending": 3,
    "partially_paid": 4,
    "finished": 5,
    "failed": 5,
    "expired": 5,
    "refunded": 5,
}

TERMINAL_PAYMENT_STATUSES = {"finished", "failed", "expired", "refunded"}
CREDIT_BEARING_STATUSES = {"partially_paid", "finished"}


def normalize_payment_status(raw: str) -> str:
    return raw.strip().lower()


def is_advancing_payment_status(current: str, new: str) -> bool:
    """Whether a callback reporting `new` may replace `current`.

    Terminal statuses are never overwritten and unknown statuses never advance.
    """

    if current in TERMINAL_PAYMENT_STATUSES:
        return False
    if new not in PAYMENT_STATUS_RANK:
        return False
    return PAYMENT_STATUS_RANK[new] > PAYMENT_STATUS_RANK.get(current, -1)
