"""
Pipeline: the link ingestion workflow and the notifications it sends.

Each stage is a named orchestrator step so a run can be resumed after a
crash without repeating completed work.
"""

from postmarks.pipeline.ingestion import LinkIngestionPipeline, notify_quietly

__all__ = ["LinkIngestionPipeline", "notify_quietly"]
