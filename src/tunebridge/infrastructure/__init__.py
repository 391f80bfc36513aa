"""Infrastructure layer: persistence, registry, notifiers, observability."""
