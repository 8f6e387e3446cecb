"""
streak_sync.sync - Reconciliation of remote boxes into local entities.

Modules:
    box            RemoteBox model
    fields         Field codecs per entity variant
    entities       Organization and Member models
    entity_sync    Create/update/delete reconciliation for one variant
    relationships  Organization <-> member link reconstruction
    engine         Run orchestration
"""
