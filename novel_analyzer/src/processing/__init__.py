"""Processing modules for chunk analysis, scheduling, job state and progress persistence."""

from .analysis_client import AnalysisClient
from .finalizer import ReportFinalizer
from .orchestrator import AnalysisOrchestrator
from .progress_store import ProgressStore
from .retry import RetryController
from .scheduler import ChunkScheduler
from .state_machine import JobStateMachine
from .time_estimator import TimeEstimator

__all__ = [
    'AnalysisClient',
    'AnalysisOrchestrator',
    'ChunkScheduler',
    'JobStateMachine',
    'ProgressStore',
    'ReportFinalizer',
    'RetryController',
    'TimeEstimator'
]
