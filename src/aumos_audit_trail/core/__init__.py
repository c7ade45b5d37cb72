"""Core layer - references, registry, protocols, ORM models and the service facade."""
