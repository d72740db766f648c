"""
Serving: FastAPI application exposing the ingestion service over HTTP.

Requests are acknowledged immediately; the work happens in background
tasks owned by :class:`~postmarks.service.IngestionService`.
"""
