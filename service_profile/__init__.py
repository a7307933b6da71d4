"""
Profile Service for the Profile Access Layer.
"""
