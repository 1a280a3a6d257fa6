"""Service layer: one class per component, each bound to an AsyncSession."""
