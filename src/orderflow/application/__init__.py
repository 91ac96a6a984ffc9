"""Application entry points: direct transitions, order commands and the service facade."""

from orderflow.application.service import OrderService
from orderflow.application.use_cases import (
    TRANSITION_COMMAND,
    CommandResult,
    OrderCommandUseCase,
    TransitionOutcome,
    TransitionResult,
    TransitionUseCase,
)

__all__ = [
    "OrderService",
    "TransitionUseCase",
    "OrderCommandUseCase",
    "TransitionResult",
    "TransitionOutcome",
    "CommandResult",
    "TRANSITION_COMMAND",
]
