"""
WhatsApp Parser: Source Package
===============================

Rule-based extraction of business events from WhatsApp chat text
(English / Malay, code-switched) for the PocketMoney point-of-sale app:
    - main.py           : FastAPI application entry point
    - auth.py           : API key + caller identity dependencies
    - config.py         : Environment settings (.env aware)
    - service.py        : Pipeline orchestrator, quota gate, public API
    - classifier.py     : Keyword classifier (order > payment > delivery > inquiry)
    - extractor.py      : Order / payment / delivery extractors
    - patterns.py       : Declarative regex rule tables with confidence weights
    - phone.py          : Malaysian phone normalization
    - language.py       : Malay / English keyword heuristic
    - store.py          : Store contract + thread-safe in-memory store
    - supabase_store.py : PostgREST-backed store and order collaborator
    - stats.py          : Summary statistics over stored extractions
    - models.py         : Pydantic schemas
    - errors.py         : Failure kinds surfaced to callers
"""
