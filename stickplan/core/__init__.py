"""Classification and upgrade planning core."""
