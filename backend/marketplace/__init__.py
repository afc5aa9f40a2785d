"""
Marketplace domain: models, persistence and chat services.
"""
