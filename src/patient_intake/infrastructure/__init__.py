"""Infrastructure layer: settings, configuration loading and logging."""
