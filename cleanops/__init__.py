"""
Cleaning and linen-delivery operations backend.
"""
