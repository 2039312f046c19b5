"""
Proposal lifecycle engine for the EIPs Insight backend.

Reconstructs per-proposal timelines, classifies open pull requests into
governance waiting states, and ranks trending proposals from the EIP/ERC/RIP
event log.
"""
