"""
Fulfillment core for the events-logistics operations console.
"""
