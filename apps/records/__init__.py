"""
Tenant-partitioned records.

Every read and write of leads, customers, activities and other
tenant-owned collections goes through TenantScopedGateway.
"""
