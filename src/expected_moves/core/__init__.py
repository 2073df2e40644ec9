"""expected_moves.core — contracts, persistence, errors, logging and market hours."""
