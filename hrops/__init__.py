"""HR Ops — leave application and policy engine."""
