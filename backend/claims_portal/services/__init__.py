"""Business logic and platform clients."""
