# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics exposed by the mail relay service."""

from prometheus_client import Counter, CollectorRegistry, generate_latest

class MailMetrics:
    """Wrapper around the Prometheus registry used by the service."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Create counters inside the provided registry."""
        self.registry = registry or CollectorRegistry()
        self.sent = Counter("mrs_sent_total", "Total emails accepted by the relay", registry=self.registry)
        self.errors = Counter("mrs_errors_total", "Total failed dispatch attempts", ["code"], registry=self.registry)
        self.rejected = Counter(
            "mrs_rejected_requests_total",
            "Requests rejected before reaching the relay",
            ["code"],
            registry=self.registry,
        )

    def inc_sent(self):
        """Increase the ``sent`` counter."""
        self.sent.inc()

    def inc_error(self, code: str):
        """Increase the ``errors`` counter for the given error code."""
        self.errors.labels(code=code or "INTERNAL_ERROR").inc()

    def inc_rejected(self, code: str):
        """Increase the ``rejected`` counter for the given error code."""
        self.rejected.labels(code=code).inc()

    def generate_latest(self) -> bytes:
        """Return the latest metrics snapshot in Prometheus text format."""
        return generate_latest(self.registry)
