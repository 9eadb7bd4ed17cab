"""
Shared infrastructure for the entitlement engines: configuration, logging,
metrics, events, error hierarchy, capabilities and collaborator interfaces.
"""
