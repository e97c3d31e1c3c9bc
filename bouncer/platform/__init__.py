"""Discord platform adapter and event dispatch."""
