"""
Permission feature module.

Implements organization-scoped Role-Based Access Control (RBAC): a role
catalog with inheritance, explicit per-actor grants and denials, cached
permission snapshots, and a request guard that fails closed.
"""
