"""Safety alerts raised during rides."""

from .sos import SOSPipeline, SOSResult, get_sos_pipeline

__all__ = ["SOSPipeline", "SOSResult", "get_sos_pipeline"]
