"""
Directory Kernel

- Materialized-path tree store (paths derived, rewritten on move)
- Authorization engine (identity, role, scope, anti-escalation)
- Append-only audit trail
- Principal credentials and access claims
"""
