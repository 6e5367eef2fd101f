"""
The Supervisor package.
Manages the lifecycle of the single supervised worker process.

This package contains the central ProcessSupervisor class and its helper
modules, which together handle spawning, monitoring, restarting within a
budget, and stopping the worker, plus the read-only status service.
"""
from .state import RestartBudget, SupervisedProcessHandle, WorkerStatus
from .supervisor import ProcessSupervisor

__all__ = ['ProcessSupervisor', 'RestartBudget', 'SupervisedProcessHandle', 'WorkerStatus']
