"""
Entitlement feature module.

Checks subscription-plan quotas and feature switches before a tenant
creates bounded resources. Fails open on storage errors.
"""
