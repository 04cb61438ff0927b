"""Support ticket lifecycle service for the administrative console."""
