"""
Analysis collaborator: interface and the OpenAI-compatible provider.
"""

from citescan.services.ai.interface import AnalysisService
from citescan.services.ai.provider import OpenAIAnalysisService

__all__ = ["AnalysisService", "OpenAIAnalysisService"]
