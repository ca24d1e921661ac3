"""
Summarization client for the Gemini generateContent API.

    from paperflow.llm import GeminiSummarizer

    summarizer = GeminiSummarizer(settings)
    summary = await summarizer.summarize(text)
"""

from paperflow.llm.summarizer import GeminiSummarizer

__all__ = ["GeminiSummarizer"]
