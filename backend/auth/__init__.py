"""
Authentication and authorization package for PMaaS.

Provides:
- Permission vocabulary and wildcard matching
- Role and user stores
- Federated (OIDC) and session-cookie request authentication
- Sync-on-login reconciliation of provider roles
- Access-decision dependencies for routes
"""
