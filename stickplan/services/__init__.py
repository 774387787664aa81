"""Platform collaborators for stickplan."""
