"""Domain services: price store, replay, snapshot cache, factors, regimes and jobs."""
