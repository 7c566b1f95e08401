"""Meeting recording module -- data models, repository, and bot lifecycle.

Provides Pydantic schemas, SQLAlchemy models and MeetingRepository for
meetings, recording jobs and transcripts. The bot subpackage talks to
Recall.ai.
"""
