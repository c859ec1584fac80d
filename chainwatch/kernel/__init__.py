"""
Chainwatch Kernel

Evaluation engine and the pipeline that feeds it.
"""

from chainwatch.kernel.evaluation import EvaluationEngine, EvaluationResult
from chainwatch.kernel.pipeline import MonitorPipeline, create_pipeline

__all__ = [
    "EvaluationEngine",
    "EvaluationResult",
    "MonitorPipeline",
    "create_pipeline",
]
