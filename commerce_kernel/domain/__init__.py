"""Pure domain layer: values, workflows, DTOs, classifier, events, clock."""
