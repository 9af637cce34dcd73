"""Flow orchestrators exposed by the CLI."""

from .approval import ApprovalGate, GateState
from .base import Flow, FlowContext, FlowResult
from .delivery import DeliveryFlow
from .intake import IntakeFlow
from .refine import RefineFlow
from .technical_readiness import TechnicalReadinessFlow

__all__ = [
    "ApprovalGate",
    "DeliveryFlow",
    "Flow",
    "FlowContext",
    "FlowResult",
    "GateState",
    "IntakeFlow",
    "RefineFlow",
    "TechnicalReadinessFlow",
]
