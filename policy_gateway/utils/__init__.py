"""
Utility modules
"""
