"""Workload installer: optional toolchain workloads as shared, versioned packs.

Core design goals:
- All-or-nothing workload installs with rollback
- Durable installation records per feature band
- Packs installed once per (id, version) and shared across workloads
- Garbage collection of packs no recorded workload references
- Offline installs from a local content cache
- Centralized logging
"""

__all__ = []
