"""Pure domain layer: clock, numbering rules, lifecycle workflow, tenant context."""
