"""
Search Need Classifier - Decides whether a query needs fresh web results.
"""

import logging
from typing import Optional

from ..core.cancellation import CancelToken
from ..core.errors import AbortedError
from ..llm.base import LLMMessage, LLMProvider

logger = logging.getLogger(__name__)

CLASSIFIER_PROMPT = """You decide whether a question typed into a browser address bar needs a web search before it can be answered well.

Reply SEARCH when the answer depends on current events, recent releases, prices, schedules, weather, live data, specific websites, or facts you are likely to be unsure about.
Reply ANSWER when the question is general knowledge, a definition, a calculation, a rewrite, code, or casual conversation.

Respond with exactly one word: SEARCH or ANSWER."""


class SearchNeedClassifier:
    """
    Single-shot classifier run on the first message of a conversation.
    Search only improves an answer, so every failure resolves to False.
    """

    def __init__(self, llm_provider: LLMProvider, max_tokens: int = 5):
        self.llm_provider = llm_provider
        self.max_tokens = max_tokens

    async def needs_search(
        self,
        query: str,
        is_follow_up: bool,
        token: Optional[CancelToken] = None,
    ) -> bool:
        """
        Ask the model whether ``query`` needs web results.

        Follow-up messages never trigger a search and make no network call.

        Raises:
            AbortedError: the turn was cancelled while classifying
        """
        if is_follow_up:
            logger.debug("Follow-up message, skipping search classification")
            return False

        try:
            response = await self.llm_provider.chat_completion(
                messages=[
                    LLMMessage.text("system", CLASSIFIER_PROMPT),
                    LLMMessage.text("user", query),
                ],
                token=token,
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
        except AbortedError:
            raise
        except Exception as e:
            logger.warning(f"Search classification failed, answering without search: {e}")
            return False

        decision = classify_response(response.content)
        logger.debug(
            f"Search classification: {decision}",
            extra={"extra_fields": {"raw": response.content[:50], "needs_search": decision}}
        )
        return decision


def classify_response(text: Optional[str]) -> bool:
    return "SEARCH" in (text or "").strip().upper()
