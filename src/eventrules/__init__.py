"""
Event Rules Engine

Evaluates behavioral events against a catalog of declarative rules:
- Condition trees split by tag into event, profile and session phases
- Raise-once deduplication per profile or session
- Ordered action execution with derived ``ruleFired`` events
- Rules enabled and disabled as plugin modules come and go
"""

__version__ = "0.1.0"
