"""expected_moves.services.engine — nightly scheduler, jobs and quote adapter."""
