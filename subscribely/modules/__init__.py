"""
Subscribely Modules
===================

Flask blueprint modules mounted by the Subscribely extension.
"""

__all__ = ['subscribers']
