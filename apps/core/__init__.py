"""
Core application: shared base model, exception taxonomy, structured
security logging, and the DRF authentication/permission glue used by the
RBAC and records apps.
"""
