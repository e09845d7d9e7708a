"""
Core utilities — domain exceptions shared by the registry, fetcher,
classifier, broadcaster and API server.
"""
