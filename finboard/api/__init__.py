"""Feature routers mounted under ``/api`` by ``finboard.routers``."""
