"""Reconcilers and the glue that lets kopf drive them."""

from .base import DONE, BaseHandler, Result
from .controlplane import ControlPlaneHandler
from .finalizers import CleanupStage, DeletionOutcome, DeletionPhase, FinalizerLifecycleManager
from .gateway import GatewayHandler
from .synchronizer import ChildSynchronizer, SyncResult
from .watches import EventMapper, ObjectKey

__all__ = [
    "DONE",
    "BaseHandler",
    "ChildSynchronizer",
    "CleanupStage",
    "ControlPlaneHandler",
    "DeletionOutcome",
    "DeletionPhase",
    "EventMapper",
    "FinalizerLifecycleManager",
    "GatewayHandler",
    "ObjectKey",
    "Result",
    "SyncResult",
]
