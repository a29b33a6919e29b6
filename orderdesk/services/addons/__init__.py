"""Add-on order policy, creation and consolidation."""
