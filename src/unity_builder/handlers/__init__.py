"""Function-runtime entry points.

- ``unity_builder.handlers.builder.handler``: reconcile and dispatch a build.
- ``unity_builder.handlers.transfer_auth.handler``: file-transfer credential check.
"""
