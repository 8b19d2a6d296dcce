"""Flask blueprints exposing the core use cases over HTTP."""
