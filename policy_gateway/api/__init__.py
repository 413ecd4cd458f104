"""
HTTP adapter over the rating and payment core.
"""
