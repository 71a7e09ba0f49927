"""Phone and SMS intake agent for trade businesses.

Answers inbound calls, collects job details turn by turn, books the job on
the tenant's calendar and matches the customer's later SMS reply back to
the booking.
"""

__version__ = "0.1.0"
