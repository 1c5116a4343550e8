from .gateway import (
    DarajaGateway,
    InitiateResult,
    PaymentGateway,
    SimulatedGateway,
    StatusResult,
    build_gateway,
)
from .scheduler import PollScheduler
from .workflow import PaymentWorkflow, WorkflowState, validate_phone_number

__all__ = [
    "DarajaGateway",
    "InitiateResult",
    "PaymentGateway",
    "PaymentWorkflow",
    "PollScheduler",
    "SimulatedGateway",
    "StatusResult",
    "WorkflowState",
    "build_gateway",
    "validate_phone_number",
]
