"""Core functionality"""
from .ssh_manager import TransportSession
from .forwarder import PortForwarder
from .runner import RemoteCommandRunner
from .monitor import OperationMonitor, SubstringPredicate
from .orchestrator import MigrationOrchestrator, Outcome, RunReport, Stage

__all__ = [
    "TransportSession", "PortForwarder", "RemoteCommandRunner",
    "OperationMonitor", "SubstringPredicate",
    "MigrationOrchestrator", "Outcome", "RunReport", "Stage",
]
