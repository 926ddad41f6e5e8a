"""planrunner - drives an external coding agent through a roadmap of JSON plans.

The package is organised around four concerns:

- ``planrunner.agent``: launching the agent and decoding its signal stream
- ``planrunner.ledger``: strict-schema plan records, atomic persistence, self-heal
- ``planrunner.executor``: outcome classification, blocker checks, retry triage
- ``planrunner.scheduler``: the loop that walks phases and plans
"""

__version__ = "0.4.0"
