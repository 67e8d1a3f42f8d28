"""Infrastructure layer: configuration, logging and audit."""
