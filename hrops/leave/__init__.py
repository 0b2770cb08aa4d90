"""Leave module — application, balance ledger and approval workflow."""
