"""
Deal Registration Kernel

The approval core for reseller deal registrations:
- Role-gated, multi-step approval workflows
- Append-only approval ledger with an explicit current-step pointer
- Bulk approval with per-deal failure isolation
- Reseller assignment with best-effort conflict resolution
"""

__version__ = "0.1.0"
