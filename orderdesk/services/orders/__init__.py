"""Sales order status handling."""
