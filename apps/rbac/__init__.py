"""
RBAC (Role-Based Access Control) application.

Provides hierarchical access control for Seva ERP with:
- Static role catalog and administrative level hierarchy
- Time-bounded, region/project/scheme scoped role assignments
- Fail-closed decision engine with global bypass roles
- Assignment lifecycle with four-eyes approval and permission overrides
"""
