"""Pure functional core: money arithmetic, workflow, audit context, DTOs.  ZERO I/O."""
