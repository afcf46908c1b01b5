"""
connect4live.data - Persistence and analytics collaborators

This package stores completed sessions and identities for the leaderboard
and records the session event stream.
"""

from connect4live.data.analytics import AnalyticsSink, EventLogAnalytics
from connect4live.data.data_manager import DataManager

__all__ = ['AnalyticsSink', 'DataManager', 'EventLogAnalytics']
