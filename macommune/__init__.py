"""Ma Commune civic document engine."""
