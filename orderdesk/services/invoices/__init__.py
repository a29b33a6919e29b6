"""Invoice creation, payment marking and legacy consolidation sync."""
