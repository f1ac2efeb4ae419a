"""
Core utilities: error taxonomy and cross-cutting concerns shared by
providers, the analysis engine, the screening pipeline and the API server.
"""
