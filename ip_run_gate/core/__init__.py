"""
Core modules for IP Run Gate.

This package contains the gate decision engine, the retention sweeper
and the service that ties them to the event log.
"""
