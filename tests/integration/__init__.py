"""
Integration tests for hookrelay.

These tests run the relay end to end against an in-process fake webhook
service and a local receiver, over real HTTP on the loopback interface.
They are separate from unit tests which use mocks for the collaborators.
"""
