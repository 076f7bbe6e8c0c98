"""
Redis cache and pub/sub client.
"""
