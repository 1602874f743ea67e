"""Generation capability interface."""

from abc import ABC, abstractmethod

from ragengine.models import ContextBundle


class Generator(ABC):
    """Turns a query and its assembled context into an answer."""

    @abstractmethod
    async def generate(self, query: str, context: ContextBundle) -> str:
        """
        Generate an answer.

        Args:
            query: User query
            context: Retrieved passages and their sources

        Returns:
            Answer text
        """
        pass


class ContextOnlyGenerator(Generator):
    """Returns the assembled context unchanged; used when no model is configured."""

    async def generate(self, query: str, context: ContextBundle) -> str:
        return context.context
