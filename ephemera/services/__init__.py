"""Per-service launchers.

Each module exposes ``run(*customizations, runtime=None, settings=None)``
returning a typed handle, plus service-specific customizations.
"""
