"""Domain route modules, each mounted under its own ``/api`` prefix."""
