"""Domain services for add-ons, production batching, order status and invoicing."""
