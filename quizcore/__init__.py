"""
quizcore: scheduling layer for expensive AI operations of the quiz platform.
Includes the AI request queue, the response cache and the rate limiter, all
coordinated through a shared key-value store.
"""

__version__ = '1.0.0'
