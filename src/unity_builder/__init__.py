"""
unity-builder: reconcile uploaded tour assets against the catalog and
dispatch asset builds to a persistent instance or an ephemeral task.
"""

__version__ = "0.3.0"
