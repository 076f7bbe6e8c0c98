"""
Domain services of the fulfillment core.
"""
