"""
Cadence - periodic task scheduling with overlap prevention.

Register tasks on a :class:`~cadence.scheduling.TaskRegistry`, wire a
:class:`~cadence.scheduling.SchedulerService`, and call ``run_due()`` once
per minute (or let ``cadence schedule work`` do it for you).
"""

__version__ = "0.1.0"
