"""LangGraph Orchestrator for Veritas pipeline."""

from .orchestrator import (
    VeritasGraph,
    PipelineRun,
    create_graph,
    run_verification,
)

__all__ = [
    "VeritasGraph",
    "PipelineRun",
    "create_graph",
    "run_verification",
]
