"""Patient-Intake: roster ingestion and reconciliation engine.

Turns uploaded spreadsheets of patient/appointment rows into validated,
de-duplicated, semantically typed records for outreach campaigns.
"""

__version__ = "1.0.0"
