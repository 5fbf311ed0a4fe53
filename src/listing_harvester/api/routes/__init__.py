"""Route modules mounted by :func:`listing_harvester.api.main.create_app`."""
