"""Index rebuilds — Stage, fill and atomically promote a new generation of an index."""

from searchbridge.swap.orchestrator import SwapOrchestrator, SwapReport
from searchbridge.swap.sources import DocumentSource, JsonlDocumentSource

__all__ = ["DocumentSource", "JsonlDocumentSource", "SwapOrchestrator", "SwapReport"]
