"""
Infrastructure layer - platform, process table, storage and system adapters
"""
