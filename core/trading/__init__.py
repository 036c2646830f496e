"""
Shared trading core: domain models, collaborator interfaces, the per-user
trade lock and the sequential trade runner used by the rebalancer.
"""
