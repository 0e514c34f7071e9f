"""Pure domain core: stock arithmetic, DTOs, and the clock abstraction."""
