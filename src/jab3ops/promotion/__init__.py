"""Promotion stage: ephemeral credentials, one SSH session, ordered remote steps."""

from jab3ops.promotion.credentials import CredentialBundle, CredentialError
from jab3ops.promotion.lock import PromotionLockedError
from jab3ops.promotion.machine import Promoter, legacy_chained_command, plan, step_command
from jab3ops.promotion.remote import RemoteSession, RemoteSessionError
from jab3ops.promotion.types import PromotionResult, PromotionState, RemoteStep, StepResult

__all__ = [
    "CredentialBundle",
    "CredentialError",
    "PromotionLockedError",
    "PromotionResult",
    "PromotionState",
    "Promoter",
    "RemoteSession",
    "RemoteSessionError",
    "RemoteStep",
    "StepResult",
    "legacy_chained_command",
    "plan",
    "step_command",
]
