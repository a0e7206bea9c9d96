"""Health-card issuance workflow.

This app owns the application lifecycle, the document/payment review
protocol, orientation scheduling and health-card issuance, together with
the REST endpoints, realtime notification hand-off and management
commands built on top of them.
"""
