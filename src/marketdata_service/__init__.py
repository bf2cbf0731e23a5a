"""
Market data aggregation service: provider failover, caching and mock fallback.
"""
