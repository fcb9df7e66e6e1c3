"""
.. include:: ../README.md
"""

__all__ = [
    "builder",
    "features",
    "images",
    "inputs",
    "instance",
    "kustomize",
    "manifest",
    "options",
    "preflight",
    "templating",
    "version",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
