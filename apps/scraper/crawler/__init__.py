"""
Backend-facing collaborators: job source, product page processor, result sink.
"""

from .job_source import BackendJobSource, JobSourceError
from .product_page import ProductPageProcessor
from .result_sink import BackendResultSink, ResultSinkError

__all__ = [
    'BackendJobSource',
    'JobSourceError',
    'ProductPageProcessor',
    'BackendResultSink',
    'ResultSinkError',
]
