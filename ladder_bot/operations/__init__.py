"""
Operations Layer

Business logic of the ladder engine. Operations compose database access into
multi-step transactions, enforce the ladder rules and hold the per-category
locks that keep every category's ranks a permutation of 1..N.

Architecture:
- Database layer: engine, sessions and simple CRUD helpers
- Operations layer: ladder rules and workflows
- Command layer: Discord cogs calling into the operations

Each operations module focuses on a specific domain:
- RankingOperations: rank store (insert, swap, move, match results, removal)
- ChallengeOperations: challenge lifecycle and result reporting
- FreezeOperations: team freeze windows
- JoinRequestOperations: category join requests and admin review
- TeamOperations: team deletion across categories
- AuditOperations: append-only audit log of admin mutations
"""
