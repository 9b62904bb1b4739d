"""
NeoLoc hub: identity, authorization and SSO for the business modules.
"""

__version__ = "1.0.0"
