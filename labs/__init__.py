"""Laboratory application for the clinic backend.

This package contains the lab order lifecycle engine together with the
models, serializers, views and route registrations that expose it to
the clinic front-end.
"""
