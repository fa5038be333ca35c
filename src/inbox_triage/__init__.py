"""
Inbox triage pipeline.

Captured items are classified by an LLM provider, auto-filed when the
classification is confident enough, and otherwise surfaced for fast human
review through swipe sessions and derived queues.
"""

__version__ = "1.0.0"
