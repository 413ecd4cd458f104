"""
Normalisation of partner gateway payloads onto the integration contracts.
"""
