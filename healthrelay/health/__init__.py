"""Health subsystem: report models and local probes."""

from .models import HealthEntry, HealthReport, HealthStatus, infer_entry_type
from .probes import HttpProbe, Probe, ProbeRegistry, ProbeResult, ProbeRunner
