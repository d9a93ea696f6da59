"""
Adapters - CLI and configuration
"""
