"""
Chat Gateway.

Real-time chat delivery over websockets for the freelance marketplace.
"""
