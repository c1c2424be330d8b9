"""Real-time presence and notification fan-out for rental conversations."""
