"""
Backend GrantShield: fraud screening for grant and rebate applications.

Normalizes identity, fraud-signal, credit and background provider responses,
detects duplicate applicants, and fuses everything into one explainable risk
score and recommendation. Modular architecture: providers, analysis engine,
screening pipeline, database and API server.
"""

__version__ = "0.1.0"
