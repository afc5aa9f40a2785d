"""
Chat Gateway Components.

- core/       - Foundational components (constants, context, service container)
- connection/ - Connection registry and heartbeat
- events/     - Protocol event types
- endpoints/  - WebSocket endpoints (base, chat session)

Import from the specific submodules.
"""
