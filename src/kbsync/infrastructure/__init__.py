"""Infrastructure layer: the boundary with the RPC transport."""
