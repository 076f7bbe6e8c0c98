"""
Asset booking availability tracking.
"""
