"""Agent code lifecycle: source splicing, version lineage, rollback, synthesis."""
