"""
Rate lookup and order pricing.
"""
