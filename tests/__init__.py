"""
Tests for the cart and checkout service.

Component tests run the real services, stores and Lua scripts against an
in-process fake Redis; only faults are injected with mocks.
"""
