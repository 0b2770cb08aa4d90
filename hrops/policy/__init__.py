"""Leave policy module — per-company calendar rules and leave-type catalog."""
