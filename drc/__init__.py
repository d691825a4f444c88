"""Docker Resource Reconciler (DRC).

Small declarative reconciler for Docker networks, images and containers:
 - validate declarations and build a dependency graph from references
 - diff desired state against the last observed state (SQLite)
 - apply create / update / replace / delete actions in dependency order
 - report per-resource outcomes, including partial failures

The implementation is intentionally small so it can be audited and explained.
"""
