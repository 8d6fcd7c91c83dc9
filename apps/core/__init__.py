"""
Core infrastructure shared by every Seva app.

Provides the base model, exception hierarchy, structured logging,
attempt limiting and the DRF permission classes that front the
authorization engine.
"""
