"""Exporter: periodic relay of local health to a central collector."""

from .client import ExportClient, SendResult
from .loop import FAILURE_THRESHOLD, CycleOutcome, ExporterLoop, ExporterPhase, ExporterState
from .options import ExporterConfigError, ExporterOptions, resolve_sink_url, resolve_source_url
