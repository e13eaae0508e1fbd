"""Learning: trace analysis, code proposals, optimization, learning status."""
