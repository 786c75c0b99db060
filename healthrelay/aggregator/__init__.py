"""Aggregator: request-time merge of local and peer health reports."""

from .fetch import InvalidPayloadError, RemoteFetchResult, RemoteTimeoutError, fetch_remote
from .merge import HealthAggregator, merge_reports, summarize_remote
from .options import AggregatorOptions, RemoteEndpoint
