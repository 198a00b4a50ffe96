"""Storage layer: capability interfaces, Redis adapter, batched writer."""
