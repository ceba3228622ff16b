"""Voice coaching: nudge policy, delivery and remote service clients."""
