"""
API Module

Thin HTTP route layer over the tool host.
"""

from toolhost.api.app import create_app

__all__ = ["create_app"]
