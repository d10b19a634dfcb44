"""
AI Decision Module

LLM-backed decision oracle and news sentiment enrichment.
The oracle proposes BUY/SELL/HOLD; stops and risk caps in core stay the hard authority.
"""
