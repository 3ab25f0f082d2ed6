"""FileVault multi-tenant file storage service."""
