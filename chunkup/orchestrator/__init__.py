"""Orchestrator package - plans, runs and finalizes upload sessions."""
from .core import UploadOrchestrator
from .process import UploadProcess, ProcessState
from .session import UploadSessionCoordinator

__all__ = ["UploadOrchestrator", "UploadProcess", "ProcessState", "UploadSessionCoordinator"]
