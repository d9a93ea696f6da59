"""
Domain layer - credentials, tunnel supervision, diagnostics, provisioning
"""
