"""AI extraction adapter and instruction schemas."""
