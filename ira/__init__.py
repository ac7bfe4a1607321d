# ira-controller/ira/__init__.py
"""IAM Roles Anywhere injector: admission webhook and certificate controller."""

__version__ = "0.1.0"
