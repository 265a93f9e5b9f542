"""
Reconciliation engine: status ledger, matching, conflict detection,
resolution and recovery orchestration
"""
