"""Task classification, model selection and dispatch."""

from model_relay.pipeline.batch import BatchDispatcher, BatchReport
from model_relay.pipeline.classifier import (
    Complexity,
    Priority,
    TaskAnalysis,
    TaskClassifier,
    TaskType,
)
from model_relay.pipeline.invoker import (
    Failure,
    InferenceTask,
    ResilientInvoker,
    Success,
)
from model_relay.pipeline.orchestrator import RelayService
from model_relay.pipeline.selector import ModelSelection, select_model

__all__ = [
    "BatchDispatcher",
    "BatchReport",
    "Complexity",
    "Priority",
    "TaskAnalysis",
    "TaskClassifier",
    "TaskType",
    "Failure",
    "InferenceTask",
    "ResilientInvoker",
    "Success",
    "RelayService",
    "ModelSelection",
    "select_model",
]
