"""
Service layer orchestrators for the chunking engine.
"""
from .chunking import AnomalySink, ChunkingService, log_anomaly

__all__ = ["AnomalySink", "ChunkingService", "log_anomaly"]
