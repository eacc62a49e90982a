"""Client-side services shared by the view-models."""
