"""Wait-reason codes reported by context-switch events."""

# Index is the wait-reason code; value is (name, blocking).
WAIT_REASONS: tuple[tuple[str, bool], ...] = (
    ("Executive", True),
    ("FreePage", True),
    ("PageIn", True),
    ("PoolAllocation", True),
    ("DelayExecution", False),
    ("Suspended", False),
    ("UserRequest", True),
    ("WrExecutive", True),
    ("WrFreePage", True),
    ("WrPageIn", True),
    ("WrPoolAllocation", True),
    ("WrDelayExecution", False),
    ("WrSuspended", False),
    ("WrUserRequest", True),
    ("WrEventPair", True),
    ("WrQueue", True),
    ("WrLpcReceive", True),
    ("WrLpcReply", True),
    ("WrVirtualMemory", True),
    ("WrPageOut", True),
    ("WrRendezvous", True),
    ("WrKeyedEvent", True),
    ("WrTerminated", True),
    ("WrProcessInSwap", True),
    ("WrCpuRateControl", False),
    ("WrCalloutStack", True),
    ("WrKernel", True),
    ("WrResource", True),
    ("WrPushLock", True),
    ("WrMutex", True),
    ("WrQuantumEnd", False),
    ("WrDispatchInt", False),
    ("WrPreempted", False),
    ("WrYieldExecution", False),
    ("WrFastMutex", True),
    ("WrGuardedMutex", True),
    ("WrRundown", True),
)

CODES_BY_NAME = {name: code for code, (name, _) in enumerate(WAIT_REASONS)}
WAIT_REASON_TABLE: dict[int, bool] = {
    code: blocking for code, (_, blocking) in enumerate(WAIT_REASONS)
}

SUSPENDED = CODES_BY_NAME["Suspended"]
USER_REQUEST = CODES_BY_NAME["UserRequest"]
WR_DELAY_EXECUTION = CODES_BY_NAME["WrDelayExecution"]
WR_USER_REQUEST = CODES_BY_NAME["WrUserRequest"]
WR_TERMINATED = CODES_BY_NAME["WrTerminated"]
WR_RESOURCE = CODES_BY_NAME["WrResource"]
WR_QUANTUM_END = CODES_BY_NAME["WrQuantumEnd"]
WR_PREEMPTED = CODES_BY_NAME["WrPreempted"]


def is_blocking(code: int) -> bool | None:
    """Return whether `code` is a blocking wait, or None for an unknown code."""
    return WAIT_REASON_TABLE.get(code)


def wait_reason_name(code: int) -> str:
    if 0 <= code < len(WAIT_REASONS):
        return WAIT_REASONS[code][0]
    return f"<unknown {code}>"
