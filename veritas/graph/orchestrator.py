"""LangGraph orchestrator for the Veritas chunked verification pipeline."""

import logging
import threading
from typing import Any, Iterator, List, Optional, TypedDict

from langgraph.graph import StateGraph, START, END

from ..agents.verifier import VerifierAgent
from ..config import settings
from ..errors import ConfigurationError, OracleError, PipelineError
from ..models.schemas import (
    AnalysisStats,
    Chunk,
    ChunkUpdate,
    PipelineProgress,
    RunStatus,
    VerificationItem,
)
from ..processing.context import annotate
from ..processing.segmenter import segment
from ..report.aggregator import aggregate
from ..services.llm_service import LLMService

logger = logging.getLogger(__name__)


class GraphState(TypedDict, total=False):
    """State flowing through the graph nodes for one run.

    The graph only carries the chunk being worked on; the accumulated
    result set lives on the PipelineRun that drives the graph.
    """
    full_text: str
    chunks: List[Chunk]
    chunk_index: int
    annotated_text: str
    last_items: List[VerificationItem]
    cancel_event: Any


def create_initial_state(
    text: str,
    chunks: List[Chunk],
    cancel_event: threading.Event
) -> GraphState:
    """Create the initial state for a verification run.

    Args:
        text: The full manuscript text
        chunks: Chunks computed up front for this run
        cancel_event: Flag checked at every chunk boundary

    Returns:
        Initial GraphState dictionary
    """
    return GraphState(
        full_text=text,
        chunks=chunks,
        chunk_index=0,
        annotated_text="",
        last_items=[],
        cancel_event=cancel_event
    )


class PipelineRun:
    """One pass of the pipeline over a manuscript.

    Iterating the run drives the graph and yields a ChunkUpdate after each
    chunk. The run is the only writer of its result set; readers get tuple
    snapshots through ``items``. ``cancel()`` may be called from any thread
    and takes effect at the next chunk boundary.
    """

    def __init__(self, graph: "VeritasGraph", text: str, chunks: List[Chunk]):
        self._graph = graph
        self._text = text
        self._chunks = chunks
        self._items: List[VerificationItem] = []
        self._cancel_event = threading.Event()
        self._started = False
        self.progress: Optional[PipelineProgress] = None
        self.status = RunStatus.PENDING
        self.error: Optional[PipelineError] = None

    @property
    def total_chunks(self) -> int:
        return len(self._chunks)

    @property
    def items(self) -> tuple:
        """Snapshot of the items appended so far."""
        return tuple(self._items)

    @property
    def stats(self) -> AnalysisStats:
        return aggregate(self._items)

    def cancel(self):
        """Request cooperative cancellation.

        The in-flight oracle call is allowed to finish; no further chunk
        is started once the request has been observed.
        """
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested")
        self._cancel_event.set()

    def __iter__(self) -> Iterator[ChunkUpdate]:
        if self._started:
            raise RuntimeError("A pipeline run can only be iterated once; start a new run instead")
        self._started = True
        return self._drive()

    def drain(self) -> "PipelineRun":
        """Consume the whole run.

        Raises:
            PipelineError: If a chunk failed partway through
        """
        for _ in self:
            pass
        return self

    def _drive(self) -> Iterator[ChunkUpdate]:
        total = len(self._chunks)
        self.progress = PipelineProgress(current=0, total=total)
        self.status = RunStatus.PROCESSING

        initial_state = create_initial_state(self._text, self._chunks, self._cancel_event)
        config = {"recursion_limit": 2 * total + 5}

        try:
            for state_update in self._graph.compiled_graph.stream(
                initial_state, config=config, stream_mode="updates"
            ):
                update = state_update.get("verify_chunk")
                if update is None:
                    continue

                chunk_items = tuple(update["last_items"])
                self._items.extend(chunk_items)
                self.progress = PipelineProgress(
                    current=self.progress.current + 1,
                    total=total
                )

                logger.info(
                    f"Chunk {self.progress.current}/{total} done: "
                    f"{len(chunk_items)} items ({len(self._items)} total)"
                )

                yield ChunkUpdate(progress=self.progress, items=chunk_items)

                if self._cancel_event.is_set():
                    break

        except OracleError as e:
            failed_index = self.progress.current
            logger.error(f"Run aborted at chunk {failed_index + 1}/{total}: {e}")
            self.status = RunStatus.FAILED
            self.error = PipelineError(
                f"Verification stopped at chunk {failed_index + 1} of {total}: {e}",
                chunk_index=failed_index,
                partial_items=self._items,
                progress=self.progress,
                cause=e
            )
            raise self.error from e
        except GeneratorExit:
            # Consumer stopped iterating; no further chunk is started
            self._cancel_event.set()
            if self.progress.current < total:
                self.status = RunStatus.CANCELLED
                logger.info(f"Run abandoned after {self.progress.current}/{total} chunks")
            else:
                self.status = RunStatus.COMPLETED
            raise
        except Exception:
            self.status = RunStatus.FAILED
            raise

        if self._cancel_event.is_set() and self.progress.current < total:
            self.status = RunStatus.CANCELLED
            logger.info(f"Run cancelled after {self.progress.current}/{total} chunks")
        else:
            self.status = RunStatus.COMPLETED
            logger.info(f"Run completed: {len(self._items)} items from {total} chunks")


class VeritasGraph:
    """LangGraph-based orchestrator for the chunked verification pipeline.

    This class builds the state machine that walks the chunks of a
    manuscript one at a time: annotate, verify, then either move to the
    next chunk or stop.
    """

    def __init__(
        self,
        llm_service: Optional[LLMService] = None,
        verifier_agent: Optional[VerifierAgent] = None,
        chunk_size: Optional[int] = None
    ):
        """Initialize the orchestrator.

        The verifier is created lazily so that a missing API key is
        reported when a run is requested, before any chunk is sent.

        Args:
            llm_service: Shared LLM service instance
            verifier_agent: Custom verifier agent
            chunk_size: Default maximum chunk size in characters
        """
        self.llm_service = llm_service
        self._verifier_agent = verifier_agent
        self.chunk_size = chunk_size or settings.CHUNK_SIZE

        # Build the graph
        self.graph = self._build_graph()
        self.compiled_graph = self.graph.compile()

        logger.info("VeritasGraph initialized successfully")

    @property
    def verifier_agent(self) -> VerifierAgent:
        if self._verifier_agent is None:
            self._verifier_agent = VerifierAgent(self.llm_service or LLMService())
        return self._verifier_agent

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph state machine.

        Returns:
            Configured StateGraph instance
        """
        graph = StateGraph(GraphState)

        # Add nodes
        graph.add_node("prepare_chunk", self._prepare_chunk_node)
        graph.add_node("verify_chunk", self._verify_chunk_node)

        # START -> prepare_chunk (or END when there is nothing to do)
        graph.add_conditional_edges(
            START,
            self._route_next_chunk,
            {
                "prepare_chunk": "prepare_chunk",
                END: END
            }
        )

        # prepare_chunk -> verify_chunk unless cancelled meanwhile
        graph.add_conditional_edges(
            "prepare_chunk",
            self._route_after_prepare,
            {
                "verify_chunk": "verify_chunk",
                END: END
            }
        )

        # verify_chunk -> next chunk or END
        graph.add_conditional_edges(
            "verify_chunk",
            self._route_next_chunk,
            {
                "prepare_chunk": "prepare_chunk",
                END: END
            }
        )

        return graph

    # ==================== Node Functions ====================

    def _prepare_chunk_node(self, state: GraphState) -> dict:
        """Attach the continuity hint to the current chunk."""
        index = state["chunk_index"]
        chunk = state["chunks"][index]

        logger.info(
            f"Processing chunk {index + 1}/{len(state['chunks'])} "
            f"(offset {chunk.start_index}, {len(chunk.text)} chars)"
        )

        return {"annotated_text": annotate(state["full_text"], index, chunk)}

    def _verify_chunk_node(self, state: GraphState) -> dict:
        """Send the annotated chunk to the oracle.

        OracleError is deliberately not caught: it ends the run.
        """
        items = self.verifier_agent.verify(state["annotated_text"])

        return {
            "last_items": items,
            "chunk_index": state["chunk_index"] + 1
        }

    # ==================== Routing Functions ====================

    def _route_next_chunk(self, state: GraphState) -> str:
        if state["cancel_event"].is_set():
            return END
        if state["chunk_index"] >= len(state["chunks"]):
            return END
        return "prepare_chunk"

    def _route_after_prepare(self, state: GraphState) -> str:
        if state["cancel_event"].is_set():
            return END
        return "verify_chunk"

    # ==================== Public Interface ====================

    def run(self, text: str, max_chunk_size: Optional[int] = None) -> PipelineRun:
        """Prepare a verification run over a manuscript.

        Configuration problems are raised here, before any chunk is
        dispatched; the oracle is only called while the returned run is
        iterated.

        Args:
            text: Full manuscript text
            max_chunk_size: Override the default chunk size

        Returns:
            A PipelineRun yielding one ChunkUpdate per chunk

        Raises:
            ConfigurationError: If the input is empty or no API key is set
        """
        if not text or not text.strip():
            raise ConfigurationError("Nothing to verify: the manuscript text is empty.")

        # Surfaces a missing credential now rather than at the first chunk
        _ = self.verifier_agent

        try:
            chunks = segment(text, max_chunk_size or self.chunk_size)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        logger.info(f"Starting verification: {len(text)} chars in {len(chunks)} chunks")
        return PipelineRun(self, text, chunks)


# ==================== Module-level convenience functions ====================

def create_graph(
    llm_service: Optional[LLMService] = None,
    **kwargs
) -> VeritasGraph:
    """Create a VeritasGraph instance.

    Args:
        llm_service: Optional LLM service instance
        **kwargs: Additional arguments for VeritasGraph

    Returns:
        Configured VeritasGraph instance
    """
    return VeritasGraph(llm_service=llm_service, **kwargs)


def run_verification(text: str, max_chunk_size: Optional[int] = None, **kwargs) -> PipelineRun:
    """Verify a manuscript end to end.

    Args:
        text: Manuscript text
        max_chunk_size: Override the default chunk size
        **kwargs: Arguments for VeritasGraph

    Returns:
        The completed (or cancelled) PipelineRun
    """
    graph = create_graph(**kwargs)
    return graph.run(text, max_chunk_size).drain()
