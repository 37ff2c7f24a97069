"""
Integration tests for the load engine and full runs.

These tests start real gevent workers against in-process transports:
- Ramp, shrink and cancellation of the worker pool
- Full setup / active / teardown lifecycles
- Every bundled suite against the fake charging-station API
- The command-line entrypoint
"""
