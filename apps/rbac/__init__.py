"""
RBAC (Role-Based Access Control) application.

Provides tenant-scoped access control with:
- A fixed role-to-scope table
- Organization-hierarchy scoping
- Access decisions with audit trail
- Actor approval workflow
"""
