"""
Keepalive keeps one long-running worker process alive on hosts that may kill,
sleep, or disconnect it.

The supervisor (keepalive.local.supervisor) owns the worker's lifecycle, and the
liveness watchdog (keepalive.worker) runs inside the worker and asks for a
restart when the external session it observes stops responding.
"""

__version__ = "1.0.0"
