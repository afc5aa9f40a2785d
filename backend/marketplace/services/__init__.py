"""
Services module for business logic.

- domain/: chat delivery engine and its supporting state
"""
