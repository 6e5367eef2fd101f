"""
Process entry points: `python -m keepalive.local.entry.supervisor` and
`python -m keepalive.local.entry.worker`.
"""
