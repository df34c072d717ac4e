"""Chat platform transport."""
