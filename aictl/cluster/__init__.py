"""Cluster adapters: resource store, workload control, log streaming."""

from aictl.cluster.store import ResourceStore, match_selector

__all__ = ["ResourceStore", "match_selector"]
