"""Production batch planning and allocation tracking."""
