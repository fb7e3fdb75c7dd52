"""Domain layer: entity types, identity value objects and exceptions."""
