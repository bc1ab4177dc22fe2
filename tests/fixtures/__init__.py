"""
PartsConnect Test Fixtures Package
Row factories and a fake reasoning model client.
"""

from .factories import BASE_TIME, MarketplaceFactory
from .ranking import FakeAnthropic, candidate_ids_from, score_all, text_response, tool_response
