"""
Shared helpers for testing code built on dbaas_platform
"""
