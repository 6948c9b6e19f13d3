"""
HTTP gateway: authenticated GET/PUT of cached objects.
"""

from oc.gateway.app import create_app

__all__ = ["create_app"]
