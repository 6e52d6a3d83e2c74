"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

leads_created = Counter("leads_created_total", "Total leads created", ["source"])
link_attempts = Counter("link_attempts_total", "Lead linking attempts", ["endpoint", "outcome"])
link_duration = Histogram("link_duration_seconds", "Duration of a linking run", ["endpoint"])
