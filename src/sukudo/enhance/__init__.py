"""Enhancement controls, filter graph construction and separation strategy."""
