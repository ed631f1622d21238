"""Chat core services: stores, state transitions and delivery."""
