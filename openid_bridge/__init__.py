"""
OpenID Connect authentication bridge.

Authenticates users against configurable OpenID Connect providers and maps
them onto local accounts.
"""

__version__ = "1.0.0"
